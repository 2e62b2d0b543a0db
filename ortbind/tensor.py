import numpy
from contextlib import contextmanager
from ctypes import *
from typing import List
from .bindings import ContractError, ExtractError, TensorError, check

ONNX_TENSOR_ELEMENT_DATA_TYPE_UNDEFINED = 0
ONNX_TENSOR_ELEMENT_DATA_TYPE_FLOAT = 1
ONNX_TENSOR_ELEMENT_DATA_TYPE_UINT8 = 2
ONNX_TENSOR_ELEMENT_DATA_TYPE_INT8 = 3
ONNX_TENSOR_ELEMENT_DATA_TYPE_UINT16 = 4
ONNX_TENSOR_ELEMENT_DATA_TYPE_INT16 = 5
ONNX_TENSOR_ELEMENT_DATA_TYPE_INT32 = 6
ONNX_TENSOR_ELEMENT_DATA_TYPE_INT64 = 7
ONNX_TENSOR_ELEMENT_DATA_TYPE_STRING = 8
ONNX_TENSOR_ELEMENT_DATA_TYPE_BOOL = 9
ONNX_TENSOR_ELEMENT_DATA_TYPE_FLOAT16 = 10
ONNX_TENSOR_ELEMENT_DATA_TYPE_DOUBLE = 11
ONNX_TENSOR_ELEMENT_DATA_TYPE_UINT32 = 12
ONNX_TENSOR_ELEMENT_DATA_TYPE_UINT64 = 13
ONNX_TENSOR_ELEMENT_DATA_TYPE_COMPLEX64 = 14
ONNX_TENSOR_ELEMENT_DATA_TYPE_COMPLEX128 = 15
ONNX_TENSOR_ELEMENT_DATA_TYPE_BFLOAT16 = 16

_NUMPY_TO_ONNX = {
    numpy.dtype(numpy.float32): ONNX_TENSOR_ELEMENT_DATA_TYPE_FLOAT,
    numpy.dtype(numpy.uint8): ONNX_TENSOR_ELEMENT_DATA_TYPE_UINT8,
    numpy.dtype(numpy.int8): ONNX_TENSOR_ELEMENT_DATA_TYPE_INT8,
    numpy.dtype(numpy.uint16): ONNX_TENSOR_ELEMENT_DATA_TYPE_UINT16,
    numpy.dtype(numpy.int16): ONNX_TENSOR_ELEMENT_DATA_TYPE_INT16,
    numpy.dtype(numpy.int32): ONNX_TENSOR_ELEMENT_DATA_TYPE_INT32,
    numpy.dtype(numpy.int64): ONNX_TENSOR_ELEMENT_DATA_TYPE_INT64,
    numpy.dtype(numpy.bool_): ONNX_TENSOR_ELEMENT_DATA_TYPE_BOOL,
    numpy.dtype(numpy.float16): ONNX_TENSOR_ELEMENT_DATA_TYPE_FLOAT16,
    numpy.dtype(numpy.float64): ONNX_TENSOR_ELEMENT_DATA_TYPE_DOUBLE,
    numpy.dtype(numpy.uint32): ONNX_TENSOR_ELEMENT_DATA_TYPE_UINT32,
    numpy.dtype(numpy.uint64): ONNX_TENSOR_ELEMENT_DATA_TYPE_UINT64,
    numpy.dtype(numpy.complex64): ONNX_TENSOR_ELEMENT_DATA_TYPE_COMPLEX64,
    numpy.dtype(numpy.complex128): ONNX_TENSOR_ELEMENT_DATA_TYPE_COMPLEX128,
}

_ONNX_TO_NUMPY = { v: k for k, v in _NUMPY_TO_ONNX.items() }

def dt_numpy_to_onnx(dt, error=TensorError) -> int:
    dt = numpy.dtype(dt)
    if dt not in _NUMPY_TO_ONNX:
        raise error(f"Unsupported numpy dtype: {dt}")
    return _NUMPY_TO_ONNX[dt]

def dt_onnx_to_numpy(dt: int, error=ExtractError) -> numpy.dtype:
    if dt not in _ONNX_TO_NUMPY:
        raise error(f"Unsupported onnx element type: {dt}")
    return _ONNX_TO_NUMPY[dt]


class Tensor:
    """
    A named ONNX Runtime value.

    Input tensors are built by `Engine.create_input_tensor()`, output tensors are
    returned by `Engine.run()`. Either way the caller owns the tensor and must
    `release()` it (or use it as a context manager); nothing is freed implicitly.

    A tensor built from a numpy buffer keeps a reference to that buffer, as the native
    value points at it.
    """
    def __init__(self, name: str, ptr, api, data=None):
        self.name = name
        self.ptr = ptr
        self.api = api
        self._data = data

    def __repr__(self):
        state = "valid" if self.valid else "released"
        return f"Tensor({self.name!r}, {state})"

    def __enter__(self) -> "Tensor":
        return self

    def __exit__(self, *exc):
        self.release()

    @property
    def valid(self) -> bool:
        return bool(self.ptr)

    def _valid(self):
        if not self.ptr:
            raise ContractError(f"invalid tensor {self.name!r} (maybe already released ?)")

    @contextmanager
    def _type_and_shape(self):
        info = c_void_p()
        check(self.api, self.api.GetTensorTypeAndShape(self.ptr, byref(info)),
              ExtractError, "Failed to get tensor type and shape info")
        try:
            yield info
        finally:
            self.api.ReleaseTensorTypeAndShapeInfo(info)

    def element_type(self) -> int:
        """Return the ONNX element type code of the tensor"""
        self._valid()
        with self._type_and_shape() as info:
            dt = c_int()
            check(self.api, self.api.GetTensorElementType(info, byref(dt)),
                  ExtractError, "Failed to get element type")
        return dt.value

    def shape(self) -> List[int]:
        """Return the dimensions of the tensor"""
        self._valid()
        with self._type_and_shape() as info:
            rank = c_size_t()
            check(self.api, self.api.GetDimensionsCount(info, byref(rank)),
                  ExtractError, "Failed to get rank")
            dims = (c_int64 * rank.value)()
            check(self.api, self.api.GetDimensions(info, dims, rank.value),
                  ExtractError, "Failed to get dimensions")
        return [ int(d) for d in dims ]

    def extract_data(self, dtype, size: int) -> numpy.ndarray:
        """
        Copy the tensor content into a new flat numpy array of `size` items of `dtype`.

        Raises ExtractError if `size` is not the element count of the tensor, or if
        `dtype` does not match its element type.
        """
        self._valid()
        dtype = numpy.dtype(dtype)
        expected = dt_numpy_to_onnx(dtype, ExtractError)
        with self._type_and_shape() as info:
            dt = c_int()
            check(self.api, self.api.GetTensorElementType(info, byref(dt)),
                  ExtractError, "Failed to get element type")
            count = c_size_t()
            check(self.api, self.api.GetTensorShapeElementCount(info, byref(count)),
                  ExtractError, "Failed to get element count")
        if dt.value != expected:
            raise ExtractError(f"Tensor {self.name!r} holds onnx element type {dt.value}, can not read it as {dtype}")
        if count.value != size:
            raise ExtractError(f"Tensor {self.name!r} holds {count.value} elements, {size} were requested")

        data = c_void_p()
        check(self.api, self.api.GetTensorMutableData(self.ptr, byref(data)),
              ExtractError, "Failed to get data from tensor")
        if not data:
            raise ExtractError(f"Tensor {self.name!r} has no data")
        buffer = (c_char * (size * dtype.itemsize)).from_address(data.value)
        return numpy.frombuffer(buffer, dtype=dtype, count=size).copy()

    def to_numpy(self) -> numpy.ndarray:
        """Builds a numpy array equivalent to the data in this tensor."""
        shape = self.shape()
        dtype = dt_onnx_to_numpy(self.element_type())
        size = int(numpy.prod(shape, dtype=numpy.int64))
        return self.extract_data(dtype, size).reshape(shape)

    def release(self):
        """Release the native value. Releasing twice is a no-op."""
        if self.ptr:
            self.api.ReleaseValue(self.ptr)
        self.ptr = None
        self._data = None
