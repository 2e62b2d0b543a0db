"""
`ortbind` Python bindings for the ONNX Runtime C API

ONNX Runtime is a neural network inference engine. These bindings talk to its C API
directly through `ctypes`, and map its manually released handles (environment, session,
session options, values) onto two Python objects: an `Engine` owning the environment and
session, and `Tensor` values the caller releases.

```python
import numpy
import ortbind

engine = ortbind.engine()
engine.create_environment()
engine.create_session("./identity.onnx")

x = engine.create_input_tensor("x", [1.0, 2.0, 3.0, 4.0], [1, 1, 2, 2])
outputs = engine.run([x], ["y"])

# [1.0, 2.0, 3.0, 4.0]
y = outputs["y"].extract_data(numpy.float32, 4)

x.release()
outputs["y"].release()
engine.release()
```

The native library is found through the `ORTBIND_LIBRARY` environment variable, next to
this package, or on the system library path.

Failures reported by the runtime raise one of `InitError`, `SessionError`, `TensorError`,
`RunError` or `ExtractError` (all `OrtError`). Calling things out of order (a session
before an environment, running an engine that was released...) raises `ContractError`.
"""

from .bindings import (
    ORT_API_VERSION,
    ContractError,
    ExtractError,
    InitError,
    OrtError,
    RunError,
    SessionError,
    TensorError,
)
from .bindings import version as _native_version
from .provider import CudaOptions
from .tensor import Tensor
from .engine import Engine

def version() -> str:
    """Return the version string of the onnxruntime native library"""
    return _native_version()

def engine() -> Engine:
    """Return a new Engine bound to the process-wide onnxruntime API"""
    return Engine()
