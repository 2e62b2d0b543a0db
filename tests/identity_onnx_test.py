import numpy
import pytest
import ortbind
from ortbind import bindings

onnx = pytest.importorskip("onnx")
from onnx import TensorProto, helper

def runtime_available():
    try:
        bindings.api()
    except (OSError, ortbind.OrtError):
        return False
    return True

pytestmark = pytest.mark.skipif(not runtime_available(), reason="onnxruntime shared library not found")

def save_identity(path, dims):
    x = helper.make_tensor_value_info("x", TensorProto.FLOAT, dims)
    y = helper.make_tensor_value_info("y", TensorProto.FLOAT, dims)
    graph = helper.make_graph([helper.make_node("Identity", ["x"], ["y"])], "identity", [x], [y])
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    onnx.save(model, str(path))
    return path

@pytest.fixture(scope="module")
def identity_onnx(tmp_path_factory):
    return save_identity(tmp_path_factory.mktemp("models") / "identity.onnx", [1, 1, 2, 2])

@pytest.fixture(scope="module")
def symbolic_identity_onnx(tmp_path_factory):
    return save_identity(tmp_path_factory.mktemp("models") / "symbolic.onnx", ["N", "C", "H", "W"])

def test_version():
    assert len(ortbind.version()) > 0

def test_identity(identity_onnx):
    with ortbind.engine() as engine:
        engine.create_environment()
        engine.create_session(identity_onnx)
        assert engine.valid
        assert engine.input_count == 1
        assert engine.input_names() == ["x"]
        assert engine.output_names() == ["y"]

        x = engine.create_input_tensor("x", [1.0, 2.0, 3.0, 4.0], [1, 1, 2, 2])
        outputs = engine.run([x], ["y"])
        y = outputs["y"]
        assert list(y.extract_data(numpy.float32, 4)) == [1.0, 2.0, 3.0, 4.0]
        assert y.shape() == [1, 1, 2, 2]
        with pytest.raises(ortbind.ExtractError):
            y.extract_data(numpy.float32, 3)
        engine.release_tensor(x)
        engine.release_tensor(y)

def test_identity_random_shapes(symbolic_identity_onnx):
    rng = numpy.random.default_rng(7)
    with ortbind.engine() as engine:
        engine.create_environment()
        engine.create_session(symbolic_identity_onnx)
        for _ in range(8):
            shape = [ int(d) for d in rng.integers(1, 5, size=4) ]
            data = rng.standard_normal(shape).astype(numpy.float32)
            with engine.create_input_tensor("x", data, shape) as x:
                with engine.run({ "x": x }, ["y"])["y"] as y:
                    numpy.testing.assert_array_equal(y.to_numpy(), data)

@pytest.mark.parametrize("kind", [bytes, bytearray])
def test_identity_from_raw_bytes(identity_onnx, kind):
    raw = kind(numpy.float32([1.0, 2.0, 3.0, 4.0]).tobytes())
    with ortbind.engine() as engine:
        engine.create_environment()
        engine.create_session(identity_onnx)
        with engine.create_input_tensor("x", raw, [1, 1, 2, 2]) as x:
            with engine.run([x], ["y"])["y"] as y:
                assert list(y.extract_data(numpy.float32, 4)) == [1.0, 2.0, 3.0, 4.0]

def test_identity_scalar(tmp_path):
    path = save_identity(tmp_path / "scalar.onnx", [])
    with ortbind.engine() as engine:
        engine.create_environment()
        engine.create_session(path)
        with engine.create_input_tensor("x", 7, []) as x:
            with engine.run([x], ["y"])["y"] as y:
                assert y.shape() == []
                assert list(y.extract_data(numpy.float32, 1)) == [7.0]

def test_malformed_model(tmp_path):
    path = tmp_path / "garbage.onnx"
    path.write_bytes(b"this is not a protobuf")
    engine = ortbind.engine()
    engine.create_environment()
    with pytest.raises(ortbind.SessionError):
        engine.create_session(path)
    assert engine.env is None
    assert not engine.valid
    engine.release()

def test_gpu_without_cuda_provider(identity_onnx):
    with ortbind.engine() as engine:
        engine.create_environment()
        try:
            engine.create_session(identity_onnx, use_gpu=True)
        except ortbind.SessionError as e:
            assert "Cannot enable CUDA::" in str(e)
        else:
            pytest.skip("this onnxruntime build provides CUDA")
        engine.create_session(identity_onnx)
        assert engine.valid

def test_release_twice(identity_onnx):
    engine = ortbind.engine()
    engine.create_environment()
    engine.create_session(identity_onnx)
    engine.release()
    engine.release()
    assert not engine.valid
