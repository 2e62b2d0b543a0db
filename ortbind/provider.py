from ctypes import *

CUDNN_CONV_ALGO_SEARCH_EXHAUSTIVE = 0
CUDNN_CONV_ALGO_SEARCH_HEURISTIC = 1
CUDNN_CONV_ALGO_SEARCH_DEFAULT = 2

DEFAULT_GPU_MEM_LIMIT = 1024 * 1024 * 1024


class CudaOptions(Structure):
    """
    Mirror of `OrtCUDAProviderOptions`, handed by reference to
    `SessionOptionsAppendExecutionProvider_CUDA`.

    Field order and types must match the C struct. The last three fields appeared in
    onnxruntime 1.14; older libraries simply do not read them.
    """
    _fields_ = [
        ("device_id", c_int),
        ("cudnn_conv_algo_search", c_int),
        ("gpu_mem_limit", c_size_t),
        ("arena_extend_strategy", c_int),
        ("do_copy_in_default_stream", c_int),
        ("has_user_compute_stream", c_int),
        ("user_compute_stream", c_void_p),
        ("default_memory_arena_cfg", c_void_p),
        ("tunable_op_enable", c_int),
        ("tunable_op_tuning_enable", c_int),
        ("tunable_op_max_tuning_duration_ms", c_int),
    ]

    @classmethod
    def defaults(cls, device_id: int = 0) -> "CudaOptions":
        """Fixed tuning used by `Engine.create_session(use_gpu=True)`.

        Default cuDNN algorithm search (no exhaustive benchmarking), a 1GiB memory
        ceiling, and no tunable-op autotuning.
        """
        return cls(
            device_id=device_id,
            cudnn_conv_algo_search=CUDNN_CONV_ALGO_SEARCH_DEFAULT,
            gpu_mem_limit=DEFAULT_GPU_MEM_LIMIT,
            arena_extend_strategy=0,
            do_copy_in_default_stream=1,
            tunable_op_enable=0,
            tunable_op_tuning_enable=0,
        )
