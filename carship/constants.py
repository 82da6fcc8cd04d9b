# CARv2 framing
CARV2_PRAGMA = bytes.fromhex("0aa16776657273696f6e02")  # dag-cbor {"version": 2}, length-prefixed
CARV2_HEADER_SIZE = 40
CARV1_VERSION = 1

# Multicodec codes
CODEC_RAW = 0x55
CODEC_DAG_PB = 0x70
CODEC_DAG_CBOR = 0x71
MH_SHA2_256 = 0x12
MH_SHA2_256_LEN = 32
INDEX_MULTIHASH_SORTED = 0x0401

CID_VERSION = 1
MULTIBASE_BASE32 = "b"

# UnixFS Data.Type
UNIXFS_RAW = 0
UNIXFS_DIRECTORY = 1
UNIXFS_FILE = 2

DEFAULT_CHUNK_SIZE = 262_144  # 256 KiB
DEFAULT_MAX_CHILDREN = 1024
DEFAULT_UPLOAD_CHUNK_SIZE = 10 * 1024 * 1024  # 10 MiB

DEFAULT_ENDPOINT = "https://api.nft.storage"
DEFAULT_CONCURRENCY = 1000
DEFAULT_RETRIES = 3
DEAD_LETTER_FILE = "dead.txt"
CAR_SUFFIX = ".car"
