import logging
import os
import sys
from contextlib import contextmanager
from ctypes import *
from ctypes.util import find_library as find_system_library
from pathlib import Path
from typing import Dict, Iterable, Iterator

logger = logging.getLogger(__name__)

ORT_API_VERSION = 14

LIBRARY_ENV_VAR = "ORTBIND_LIBRARY"

LOGGING_LEVEL_VERBOSE = 0
LOGGING_LEVEL_INFO = 1
LOGGING_LEVEL_WARNING = 2
LOGGING_LEVEL_ERROR = 3
LOGGING_LEVEL_FATAL = 4

GRAPH_OPTIMIZATION_DISABLE_ALL = 0
GRAPH_OPTIMIZATION_ENABLE_BASIC = 1
GRAPH_OPTIMIZATION_ENABLE_EXTENDED = 2
GRAPH_OPTIMIZATION_ENABLE_ALL = 99

ALLOCATOR_DEVICE = 0
ALLOCATOR_ARENA = 1

MEM_TYPE_DEFAULT = 0


class OrtError(Exception):
    pass

class InitError(OrtError):
    pass

class SessionError(OrtError):
    pass

class TensorError(OrtError):
    pass

class RunError(OrtError):
    pass

class ExtractError(OrtError):
    pass

class ContractError(AssertionError):
    """Raised when the binding is driven out of order. This is a caller bug, not a runtime failure."""
    pass


# ORTCHAR_T is wchar_t on Windows
if sys.platform == "win32":
    c_ortchar_p = c_wchar_p
else:
    c_ortchar_p = c_char_p

def ortchar(path):
    """Convert a str or Path into the native path type."""
    if c_ortchar_p is c_wchar_p:
        return str(path)
    return str(path).encode("utf-8")

# slot in the OrtApi struct, restype, argtypes. OrtStatus* is carried as c_void_p.
FUNCTIONS = {
    "GetErrorMessage": (2, c_char_p, [c_void_p]),
    "CreateEnv": (3, c_void_p, [c_int, c_char_p, POINTER(c_void_p)]),
    "CreateSession": (7, c_void_p, [c_void_p, c_ortchar_p, c_void_p, POINTER(c_void_p)]),
    "Run": (9, c_void_p, [c_void_p, c_void_p, POINTER(c_char_p), POINTER(c_void_p), c_size_t,
                          POINTER(c_char_p), c_size_t, POINTER(c_void_p)]),
    "CreateSessionOptions": (10, c_void_p, [POINTER(c_void_p)]),
    "DisableMemPattern": (17, c_void_p, [c_void_p]),
    "SetSessionGraphOptimizationLevel": (23, c_void_p, [c_void_p, c_int]),
    "SetIntraOpNumThreads": (24, c_void_p, [c_void_p, c_int]),
    "SessionGetInputCount": (30, c_void_p, [c_void_p, POINTER(c_size_t)]),
    "SessionGetOutputCount": (31, c_void_p, [c_void_p, POINTER(c_size_t)]),
    "SessionGetInputName": (36, c_void_p, [c_void_p, c_size_t, c_void_p, POINTER(c_void_p)]),
    "SessionGetOutputName": (37, c_void_p, [c_void_p, c_size_t, c_void_p, POINTER(c_void_p)]),
    "CreateTensorWithDataAsOrtValue": (49, c_void_p, [c_void_p, c_void_p, c_size_t, POINTER(c_int64),
                                                      c_size_t, c_int, POINTER(c_void_p)]),
    "GetTensorMutableData": (51, c_void_p, [c_void_p, POINTER(c_void_p)]),
    "GetTensorElementType": (60, c_void_p, [c_void_p, POINTER(c_int)]),
    "GetDimensionsCount": (61, c_void_p, [c_void_p, POINTER(c_size_t)]),
    "GetDimensions": (62, c_void_p, [c_void_p, POINTER(c_int64), c_size_t]),
    "GetTensorShapeElementCount": (64, c_void_p, [c_void_p, POINTER(c_size_t)]),
    "GetTensorTypeAndShape": (65, c_void_p, [c_void_p, POINTER(c_void_p)]),
    "CreateMemoryInfo": (68, c_void_p, [c_char_p, c_int, c_int, c_int, POINTER(c_void_p)]),
    "CreateCpuMemoryInfo": (69, c_void_p, [c_int, c_int, POINTER(c_void_p)]),
    "AllocatorFree": (76, c_void_p, [c_void_p, c_void_p]),
    "GetAllocatorWithDefaultOptions": (78, c_void_p, [POINTER(c_void_p)]),
    "ReleaseEnv": (92, None, [c_void_p]),
    "ReleaseStatus": (93, None, [c_void_p]),
    "ReleaseMemoryInfo": (94, None, [c_void_p]),
    "ReleaseSession": (95, None, [c_void_p]),
    "ReleaseValue": (96, None, [c_void_p]),
    "ReleaseTensorTypeAndShapeInfo": (99, None, [c_void_p]),
    "ReleaseSessionOptions": (100, None, [c_void_p]),
    "SessionOptionsAppendExecutionProvider_CUDA": (152, c_void_p, [c_void_p, c_void_p]),
}


class OrtApiBase(Structure):
    _fields_ = [
        ("GetApi", CFUNCTYPE(c_void_p, c_uint32)),
        ("GetVersionString", CFUNCTYPE(c_char_p)),
    ]


class OrtApi:
    """
    The ONNX Runtime dispatch table.

    Entries are looked up by their C name (`api.CreateEnv(...)`) and bound to their
    ctypes prototype on first use.
    """
    def __init__(self, ptr):
        self.ptr = ptr
        self._table = cast(ptr, POINTER(c_void_p))

    def __getattr__(self, name):
        try:
            slot, restype, argtypes = FUNCTIONS[name]
        except KeyError:
            raise AttributeError(name) from None
        address = self._table[slot]
        if not address:
            raise OrtError(f"{name} is not provided by this onnxruntime build")
        function = CFUNCTYPE(restype, *argtypes)(address)
        setattr(self, name, function)
        return function


_lib = None
_apis: Dict[int, OrtApi] = {}

def find_library() -> str:
    """Locate the onnxruntime shared library.

    `ORTBIND_LIBRARY` wins, then a library shipped next to this package, then the
    system search path.
    """
    path = os.environ.get(LIBRARY_ENV_VAR)
    if path:
        return path
    here = Path(__file__).parent
    for pattern in ("*onnxruntime*.so*", "*onnxruntime*.dylib", "*onnxruntime*.dll"):
        found = sorted(here.glob(pattern))
        if len(found) > 0:
            return str(found[0])
    path = find_system_library("onnxruntime")
    if path is None:
        raise OrtError("Can not find onnxruntime dynamic library")
    return path

def load_library():
    global _lib
    if _lib is None:
        path = find_library()
        lib = cdll.LoadLibrary(path)
        lib.OrtGetApiBase.restype = POINTER(OrtApiBase)
        lib.OrtGetApiBase.argtypes = []
        logger.debug("loaded onnxruntime from %s", path)
        _lib = lib
    return _lib

def version() -> str:
    """Return the version string of the onnxruntime native library"""
    base = load_library().OrtGetApiBase()
    return str(base.contents.GetVersionString(), "utf-8")

def api(version: int = ORT_API_VERSION) -> OrtApi:
    """Return the process-wide dispatch table for the requested API version."""
    if version not in _apis:
        base = load_library().OrtGetApiBase()
        ptr = base.contents.GetApi(version)
        if not ptr:
            native = str(base.contents.GetVersionString(), "utf-8")
            raise InitError(f"onnxruntime {native} does not provide API version {version}")
        _apis[version] = OrtApi(c_void_p(ptr))
    return _apis[version]

def check(api, status, error=OrtError, message: str = ""):
    """Turn a native status into an exception of type `error`.

    A null status is success. Otherwise the message is read and the status released
    before raising, on every path.
    """
    if not status:
        return
    try:
        native = api.GetErrorMessage(status)
        native = "unknown error" if native is None else str(native, "utf-8", "replace")
    finally:
        api.ReleaseStatus(status)
    raise error(message + "::" + native)

@contextmanager
def c_string_array(names: Iterable[str]) -> Iterator[Array]:
    """Pack names in one NUL-terminated buffer, and yield a `char*` array pointing into it.

    The pointers are only valid inside the `with` block.
    """
    encoded = [str(n).encode("utf-8") for n in names]
    buffer = create_string_buffer(b"".join(e + b"\0" for e in encoded))
    array = (c_char_p * (len(encoded) + 1))()
    offset = 0
    for ix, e in enumerate(encoded):
        array[ix] = addressof(buffer) + offset
        offset += len(e) + 1
    array[len(encoded)] = None
    yield array
