import os
from dataclasses import dataclass


@dataclass
class Protocols:
    GROTH16 = "groth16"
    PLONK = "plonk"
    FFLONK = "fflonk"


SUPPORTED_PROTOCOLS = [Protocols.GROTH16, Protocols.PLONK, Protocols.FFLONK]

# Keep synced with the snarkjs installs made by pre-flight, newest first
SNARKJS_VERSIONS = [
    "0.7.4",
    "0.7.3",
    "0.7.2",
    "0.7.1",
    "0.7.0",
    "0.6.11",
]

# Keep synced with the circom binaries on PATH, newest first
CIRCOM_VERSIONS = [
    "2.1.8",
    "2.1.7",
    "2.1.6",
    "2.1.5",
    "2.1.4",
    "2.1.3",
    "2.1.2",
    "2.1.1",
    "2.1.0",
    "2.0.9",
    "2.0.8",
]
# Compiler executables are named circom-v<version>
CIRCOM_PREFIX = "circom-v"

# Primes accepted by circom's --prime flag
DEFAULT_PRIME = "bn128"
SUPPORTED_PRIMES = [
    "bn128",
    "bls12381",
    "goldilocks",
    "grumpkin",
    "pallas",
    "vesta",
    "secq256r1",
]

DEFAULT_OPTIMIZATION = 2
REQUEST_ID_PATTERN = r"^[a-zA-Z0-9]{6,40}$"

# Name of the main component every build compiles
BUILD_NAME = "verify_circuit"
# Debug include emitted by some snarkjs plonk verifier templates
HARDHAT_IMPORT = 'import "hardhat/console.sol";'

# Polygon Hermez / zkEVM powers of tau mirror
PTAU_URL_BASE = "https://storage.googleapis.com/zkevm/ptau"
MIN_PTAU_SIZE = 8
MAX_PTAU_SIZE = 28

# Groth16 contributions applied on top of the genesis key
GROTH16_CONTRIBUTIONS = 1
ENTROPY_BYTES = 32

# Blob store key layout
BUILD_KEY_PREFIX = "build"
STATUS_KEY_PREFIX = "status"
RESPONSE_KEY_PREFIX = "instance-response"

# Package templates rendered into every build
PACKAGE_TEMPLATES = ["index.js", "package.json", "README.md"]
TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.realpath(__file__)), "template")

# Various time constants in seconds
ONE_SECOND = 1
ONE_MINUTE = 60
FIVE_MINUTES = ONE_MINUTE * 5
ONE_HOUR = ONE_MINUTE * 60

# Interval between status uploads
STATUS_FLUSH_INTERVAL_SECONDS = 5
# Interval between compiler memory samples
MEMORY_MONITOR_INTERVAL_SECONDS = 10
# Interval between process resource logs during setup
RESOURCE_LOG_INTERVAL_SECONDS = 10
# Delay before releasing the prover lease so in-flight work can settle
PROVER_RELEASE_GRACE_SECONDS = 1
# Maximum number of builds holding a prover lease at once
MAX_CONCURRENT_PROVERS = 4
# Chunk size for streamed downloads
DOWNLOAD_CHUNK_SIZE = 1024 * 1024

# Temporary folder for workspaces and cached PTAU files
TEMP_FOLDER = os.getenv("PIPELINE_TEMP_FOLDER", "/tmp/circuit-pipeline")
# Root of the per-version snarkjs installs
LOCAL_SNARKJS_INSTALL_DIR = os.getenv(
    "SNARKJS_INSTALL_DIR", os.path.join(os.path.expanduser("~"), ".snarkjs")
)
