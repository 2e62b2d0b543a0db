import logging
import numpy
from collections.abc import Mapping
from ctypes import *
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union # after ctypes so that Union is overriden
from . import bindings
from .bindings import (
    ALLOCATOR_ARENA,
    ALLOCATOR_DEVICE,
    GRAPH_OPTIMIZATION_DISABLE_ALL,
    LOGGING_LEVEL_ERROR,
    MEM_TYPE_DEFAULT,
    ContractError,
    InitError,
    OrtError,
    RunError,
    SessionError,
    TensorError,
    c_string_array,
    check,
    ortchar,
)
from .provider import CudaOptions
from .tensor import Tensor, dt_numpy_to_onnx

logger = logging.getLogger(__name__)

InputValue = Union[Tensor, numpy.ndarray]


class Engine:
    """
    Owner of an ONNX Runtime environment, session and (in GPU mode) session options.

    ```python
    engine = ortbind.Engine()
    engine.create_environment()
    engine.create_session("identity.onnx")

    x = engine.create_input_tensor("x", [1.0, 2.0, 3.0, 4.0], [1, 1, 2, 2])
    outputs = engine.run([x], ["y"])
    y = outputs["y"].extract_data(numpy.float32, 4)

    x.release()
    outputs["y"].release()
    engine.release()
    ```

    Native handles are released in `release()`, in reverse creation order:
    session options, session, environment. Tensors are not tracked by the engine, the
    caller releases them.

    An Engine is not thread safe. Use one per worker, or serialize access.
    """

    def __init__(self, api=None):
        self.api = bindings.api() if api is None else api
        self.env = None
        self.session = None
        self.session_options = None
        self.use_gpu = False
        self.device_id = 0
        self.input_count = 0
        self.output_count = 0

    def __del__(self):
        if getattr(self, "api", None) is not None:
            self.release()

    def __enter__(self) -> "Engine":
        return self

    def __exit__(self, *exc):
        self.release()

    @property
    def valid(self) -> bool:
        return bool(self.env) and bool(self.session)

    def _valid(self):
        if not self.valid:
            raise ContractError("invalid engine (environment and session must be created, and not released)")

    def create_environment(self, name: str = "ONNX_BASE", logging_level: int = LOGGING_LEVEL_ERROR) -> None:
        """Create the native environment. Must be called once, before `create_session()`."""
        if self.env:
            raise ContractError("environment already created")
        env = c_void_p()
        check(self.api, self.api.CreateEnv(logging_level, str(name).encode("utf-8"), byref(env)),
              InitError, "Cannot create environment")
        self.env = env
        logger.debug("created onnxruntime environment %r", name)

    def create_session(self, model_path: Union[str, Path], use_gpu: bool = False,
                       cuda_options: Optional[CudaOptions] = None) -> None:
        """
        Load a model in a new session.

        With `use_gpu`, the session gets the CUDA execution provider (configured by
        `cuda_options`, or `CudaOptions.defaults()`), a single intra-op thread, and
        neither graph optimization nor memory pattern.

        If the model can not be loaded, the environment is released too and this engine
        can not be reused.
        """
        if not self.env:
            raise ContractError("create_environment() must be called before create_session()")
        if self.session:
            raise ContractError("session already created")
        if use_gpu:
            if cuda_options is None:
                cuda_options = CudaOptions.defaults()
            self._create_gpu_session_options(cuda_options)

        session = c_void_p()
        status = self.api.CreateSession(self.env, ortchar(model_path), self.session_options, byref(session))
        if status:
            logger.warning("failed to load %s, releasing environment", model_path)
            try:
                check(self.api, status, SessionError, "Cannot load model")
            finally:
                self.release()
        self.session = session
        self.use_gpu = use_gpu

        count = c_size_t()
        check(self.api, self.api.SessionGetInputCount(self.session, byref(count)),
              SessionError, "Cannot get input count")
        self.input_count = count.value
        check(self.api, self.api.SessionGetOutputCount(self.session, byref(count)),
              SessionError, "Cannot get output count")
        self.output_count = count.value
        logger.debug("loaded %s (gpu: %s, %d inputs, %d outputs)",
                     model_path, use_gpu, self.input_count, self.output_count)

    def _create_gpu_session_options(self, cuda_options: CudaOptions):
        options = c_void_p()
        check(self.api, self.api.CreateSessionOptions(byref(options)),
              SessionError, "Cannot create session options")
        self.session_options = options
        try:
            check(self.api, self.api.SetIntraOpNumThreads(options, 1),
                  SessionError, "Cannot set intra-op thread count")
            check(self.api, self.api.SetSessionGraphOptimizationLevel(options, GRAPH_OPTIMIZATION_DISABLE_ALL),
                  SessionError, "Cannot set graph optimization level")
            check(self.api, self.api.DisableMemPattern(options),
                  SessionError, "Cannot disable memory pattern")
            check(self.api, self.api.SessionOptionsAppendExecutionProvider_CUDA(options, byref(cuda_options)),
                  SessionError, "Cannot enable CUDA")
        except OrtError as e:
            self.api.ReleaseSessionOptions(options)
            self.session_options = None
            if isinstance(e, SessionError):
                raise
            raise SessionError(f"Cannot enable CUDA::{e}") from e
        self.device_id = cuda_options.device_id

    def input_names(self) -> List[str]:
        """Return the names of the model inputs"""
        self._valid()
        return [ self._name(self.api.SessionGetInputName, ix) for ix in range(self.input_count) ]

    def output_names(self) -> List[str]:
        """Return the names of the model outputs"""
        self._valid()
        return [ self._name(self.api.SessionGetOutputName, ix) for ix in range(self.output_count) ]

    def _name(self, getter, ix: int) -> str:
        allocator = c_void_p()
        check(self.api, self.api.GetAllocatorWithDefaultOptions(byref(allocator)),
              SessionError, "Cannot get default allocator")
        cstring = c_void_p()
        check(self.api, getter(self.session, ix, allocator, byref(cstring)),
              SessionError, f"Cannot get name #{ix}")
        result = str(string_at(cstring.value), "utf-8")
        check(self.api, self.api.AllocatorFree(allocator, cstring),
              SessionError, f"Cannot free name #{ix}")
        return result

    def create_input_tensor(self, name: str, data, shape: List[int], dtype=numpy.float32,
                            on_device: Optional[bool] = None) -> Tensor:
        """
        Wrap `data` as a native tensor of `shape` and `dtype`, to be fed to `run()` as `name`.

        `data` is one of:

        - a raw byte buffer (`bytes`, `bytearray`, byte `memoryview`), reinterpreted as
          items of `dtype`;
        - anything else numpy can turn into a contiguous array, including plain scalars
          (converted to `dtype` if needed);
        - a `ctypes.c_void_p` address of a buffer that the caller guarantees to be
          large enough and alive as long as the tensor.

        Buffers must hold exactly the bytes of `shape`.

        `on_device` tags the buffer as CUDA device memory. It defaults to True only for
        raw addresses given to an engine in GPU mode.
        """
        self._valid()
        dtype = numpy.dtype(dtype)
        element_type = dt_numpy_to_onnx(dtype)
        shape = [ int(d) for d in shape ]
        if any(d < 0 for d in shape):
            raise TensorError(f"Invalid shape {shape} for input {name!r}")
        nbytes = int(numpy.prod(shape, dtype=numpy.int64)) * dtype.itemsize

        if isinstance(data, c_void_p):
            if not data:
                raise TensorError(f"Input {name!r} has a null address")
            array = None
            address = data.value
        else:
            try:
                if isinstance(data, (bytes, bytearray)) or (isinstance(data, memoryview) and data.format in ("B", "b", "c")):
                    array = numpy.frombuffer(data, dtype=dtype)
                else:
                    array = numpy.ascontiguousarray(data, dtype=dtype)
            except (TypeError, ValueError, BufferError) as e:
                raise TensorError(f"Input {name!r} can not be read as {dtype}: {e}") from e
            if array.nbytes != nbytes:
                raise TensorError(f"Input {name!r} holds {array.nbytes} bytes, shape {shape} of {dtype} needs {nbytes}")
            address = array.ctypes.data
        if on_device is None:
            on_device = self.use_gpu and array is None

        memory_info = c_void_p()
        if on_device:
            status = self.api.CreateMemoryInfo(b"Cuda", ALLOCATOR_DEVICE, self.device_id, MEM_TYPE_DEFAULT, byref(memory_info))
        else:
            status = self.api.CreateCpuMemoryInfo(ALLOCATOR_ARENA, MEM_TYPE_DEFAULT, byref(memory_info))
        check(self.api, status, TensorError, "Cannot create memory info")

        dims = (c_int64 * len(shape))(*shape)
        value = c_void_p()
        try:
            check(self.api, self.api.CreateTensorWithDataAsOrtValue(
                      memory_info, c_void_p(address), nbytes, dims, len(shape), element_type, byref(value)),
                  TensorError, f"Cannot create input tensor {name!r}")
        finally:
            self.api.ReleaseMemoryInfo(memory_info)
        return Tensor(name, value, self.api, array)

    def run(self, inputs: Union[Mapping, List[Union[Tensor, Tuple[str, InputValue]]]],
            output_names: List[str]) -> Dict[str, Tensor]:
        """
        Run the model once, and return the requested outputs by name.

        `inputs` is a dict of name to tensor, a list of tensors (fed under their own
        name), or a list of (name, tensor) pairs. numpy arrays are accepted in place of
        tensors; they are wrapped for the call and released afterwards.

        An output the runtime does not produce is missing from the result: this is not
        an error.
        """
        self._valid()
        named = self._named_inputs(inputs)
        output_names = [ str(n) for n in output_names ]
        if len(named) == 0 or len(output_names) == 0:
            raise ContractError("run() needs at least one input and one output name")

        temporaries = []
        values = (c_void_p * len(named))()
        outputs = (c_void_p * len(output_names))()
        try:
            for ix, (name, v) in enumerate(named):
                if isinstance(v, Tensor):
                    v._valid()
                elif isinstance(v, numpy.ndarray):
                    v = self.create_input_tensor(name, v, v.shape, v.dtype, on_device=False)
                    temporaries.append(v)
                else:
                    raise ContractError(f"Inputs must be of type ortbind.Tensor or numpy.ndarray, got {v!r}")
                values[ix] = v.ptr.value
            with c_string_array(n for n, _ in named) as in_names, c_string_array(output_names) as out_names:
                check(self.api, self.api.Run(self.session, None, in_names, values, len(named),
                                             out_names, len(output_names), outputs),
                      RunError, "Failed to run")
        finally:
            for t in temporaries:
                t.release()

        result = {}
        for name, ptr in zip(output_names, outputs):
            if ptr:
                result[name] = Tensor(name, c_void_p(ptr), self.api)
        return result

    @staticmethod
    def _named_inputs(inputs) -> List[Tuple[str, InputValue]]:
        if isinstance(inputs, Mapping):
            return [ (str(k), v) for k, v in inputs.items() ]
        named = []
        for v in inputs:
            if isinstance(v, Tensor):
                named.append((v.name, v))
            else:
                name, value = v
                named.append((str(name), value))
        return named

    def extract_data(self, tensor: Tensor, dtype, size: int) -> numpy.ndarray:
        """Same as `tensor.extract_data(dtype, size)`"""
        return tensor.extract_data(dtype, size)

    def release_tensor(self, tensor: Tensor) -> None:
        """Release a tensor built or returned by this engine"""
        tensor._valid()
        tensor.release()

    def release(self) -> None:
        """Release session options, session and environment. Safe to call more than once."""
        if self.session_options:
            self.api.ReleaseSessionOptions(self.session_options)
        self.session_options = None
        if self.session:
            self.api.ReleaseSession(self.session)
        self.session = None
        if self.env:
            self.api.ReleaseEnv(self.env)
            logger.debug("released onnxruntime environment")
        self.env = None
        self.input_count = 0
        self.output_count = 0
