import pytest
from fake_api import FakeApi
from ortbind import CudaOptions, Engine, InitError, OrtError, SessionError
from ortbind.bindings import GRAPH_OPTIMIZATION_DISABLE_ALL
from ortbind.provider import CUDNN_CONV_ALGO_SEARCH_DEFAULT, DEFAULT_GPU_MEM_LIMIT

def test_environment_then_session_is_valid(api):
    engine = Engine(api)
    assert not engine.valid
    engine.create_environment("test")
    assert not engine.valid
    engine.create_session("identity.onnx")
    assert engine.valid
    assert engine.input_count == 1
    assert engine.output_count == 1
    engine.release()

def test_session_before_environment(api):
    engine = Engine(api)
    with pytest.raises(AssertionError):
        engine.create_session("identity.onnx")
    assert "CreateSession" not in api.calls

def test_environment_twice(engine):
    with pytest.raises(AssertionError):
        engine.create_environment()

def test_session_twice(engine):
    with pytest.raises(AssertionError):
        engine.create_session("identity.onnx")

def test_environment_failure(api):
    api.fail("CreateEnv", "no logging manager")
    engine = Engine(api)
    with pytest.raises(InitError) as e:
        engine.create_environment()
    assert str(e.value) == "Cannot create environment::no logging manager"
    assert not engine.valid
    assert engine.env is None
    assert api.released_statuses == ["no logging manager"]
    assert api.leaks() == {}

def test_malformed_model_releases_environment(api):
    engine = Engine(api)
    engine.create_environment()
    with pytest.raises(SessionError) as e:
        engine.create_session("garbage.onnx")
    assert "Cannot load model::" in str(e.value)
    assert "Protobuf parsing failed" in str(e.value)
    assert engine.env is None
    assert engine.session is None
    assert not engine.valid
    assert api.released == ["status", "env"]
    assert api.leaks() == {}
    with pytest.raises(AssertionError):
        engine.create_session("identity.onnx")

def test_model_path_accepts_pathlib(api, tmp_path):
    api.models[str(tmp_path / "m.onnx")] = api.models["identity.onnx"]
    with Engine(api) as engine:
        engine.create_environment()
        engine.create_session(tmp_path / "m.onnx")
        assert engine.valid

def test_input_and_output_names(engine, api):
    assert engine.input_names() == ["x"]
    assert engine.output_names() == ["y"]
    assert api.allocations == {}

def test_release_order_with_gpu(api):
    engine = Engine(api)
    engine.create_environment()
    engine.create_session("identity.onnx", use_gpu=True)
    assert engine.use_gpu
    api.released.clear()
    engine.release()
    assert api.released == ["session_options", "session", "env"]
    assert api.leaks() == {}

def test_release_order_without_gpu(engine, api):
    engine.release()
    assert api.released == ["session", "env"]

def test_release_twice(engine, api):
    engine.release()
    engine.release()
    assert not engine.valid
    assert api.leaks() == {}

def test_release_without_anything(api):
    Engine(api).release()
    assert api.released == []

def test_context_manager(api):
    with Engine(api) as engine:
        engine.create_environment()
        engine.create_session("identity.onnx")
    assert not engine.valid
    assert api.leaks() == {}

def test_gpu_session_options(api):
    with Engine(api) as engine:
        engine.create_environment()
        engine.create_session("identity.onnx", use_gpu=True)
        options = api.session_options[engine.session_options.value]
        assert options == {
            "intra_op_threads": 1,
            "graph_optimization_level": GRAPH_OPTIMIZATION_DISABLE_ALL,
            "mem_pattern": False,
            "cuda": True,
        }
        assert api.cuda_options.cudnn_conv_algo_search == CUDNN_CONV_ALGO_SEARCH_DEFAULT
        assert api.cuda_options.gpu_mem_limit == DEFAULT_GPU_MEM_LIMIT
        assert api.cuda_options.tunable_op_enable == 0
        assert api.cuda_options.tunable_op_tuning_enable == 0

def test_gpu_custom_cuda_options(api):
    with Engine(api) as engine:
        engine.create_environment()
        engine.create_session("identity.onnx", use_gpu=True, cuda_options=CudaOptions.defaults(device_id=1))
        assert api.cuda_options.device_id == 1
        assert engine.device_id == 1

def test_gpu_without_cuda_provider(api):
    api.cuda_available = False
    engine = Engine(api)
    engine.create_environment()
    with pytest.raises(SessionError) as e:
        engine.create_session("identity.onnx", use_gpu=True)
    assert str(e.value) == "Cannot enable CUDA::CUDA execution provider is not enabled in this build."
    assert "CreateSession" not in api.calls
    assert engine.session_options is None
    assert api.released == ["status", "session_options"]

    engine.create_session("identity.onnx")
    assert engine.valid
    assert not engine.use_gpu
    engine.release()
    assert api.leaks() == {}

class NoCudaApi(FakeApi):
    @property
    def SessionOptionsAppendExecutionProvider_CUDA(self):
        raise OrtError("SessionOptionsAppendExecutionProvider_CUDA is not provided by this onnxruntime build")

def test_gpu_cuda_entry_missing_from_api():
    api = NoCudaApi()
    engine = Engine(api)
    engine.create_environment()
    with pytest.raises(SessionError) as e:
        engine.create_session("identity.onnx", use_gpu=True)
    assert not isinstance(e.value, InitError)
    assert str(e.value).startswith("Cannot enable CUDA::")
    assert "CreateSession" not in api.calls
    assert engine.session_options is None
    assert api.released == ["session_options"]

    engine.create_session("identity.onnx")
    assert engine.valid
    engine.release()
    assert api.leaks() == {}

def test_gpu_model_failure_releases_session_options(api):
    engine = Engine(api)
    engine.create_environment()
    with pytest.raises(SessionError):
        engine.create_session("garbage.onnx", use_gpu=True)
    assert api.released == ["status", "session_options", "env"]
    assert api.leaks() == {}

@pytest.mark.parametrize("step", [
    "CreateSessionOptions",
    "SetIntraOpNumThreads",
    "SetSessionGraphOptimizationLevel",
    "DisableMemPattern",
])
def test_gpu_configuration_failures(api, step):
    api.fail(step, "rejected")
    engine = Engine(api)
    engine.create_environment()
    with pytest.raises(SessionError) as e:
        engine.create_session("identity.onnx", use_gpu=True)
    assert str(e.value).endswith("::rejected")
    assert "CreateSession" not in api.calls
    engine.release()
    assert api.leaks() == {}

def test_input_count_failure(api):
    api.fail("SessionGetInputCount", "no graph")
    with Engine(api) as engine:
        engine.create_environment()
        with pytest.raises(SessionError) as e:
            engine.create_session("identity.onnx")
        assert str(e.value) == "Cannot get input count::no graph"
    assert api.leaks() == {}
