import numpy as np
import pytest

from lowlatvideo.upscaler import Algorithm, Upscaler


def test_phase2_configuration():
    upscaler = Upscaler(Algorithm.BILINEAR, True)
    upscaler.initialize(1920, 1080)
    assert upscaler.use_gpu is False
    assert upscaler.algorithm_name() == "Bilinear"
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    upscaled = upscaler.upscale(frame)
    assert upscaled.shape == (1080, 1920, 3)
    assert upscaled.dtype == np.uint8


def test_defaults():
    upscaler = Upscaler()
    assert upscaler.algorithm is Algorithm.BILINEAR
    assert not upscaler.initialized
    assert upscaler.target_size == (0, 0)


@pytest.mark.parametrize(
    "algorithm, name",
    [
        (Algorithm.NEAREST, "Nearest Neighbor"),
        (Algorithm.BILINEAR, "Bilinear"),
        (Algorithm.BICUBIC, "Bicubic"),
        (Algorithm.LANCZOS, "Lanczos"),
        (Algorithm.SUPER_RES, "Super Resolution"),
    ],
)
def test_algorithm_names(algorithm, name):
    assert Upscaler(algorithm).algorithm_name() == name


@pytest.mark.parametrize("width, height", [(0, 1080), (1920, 0), (-1, 10)])
def test_invalid_resolution(width, height):
    upscaler = Upscaler()
    with pytest.raises(ValueError):
        upscaler.initialize(width, height)
    assert not upscaler.initialized


def test_upscale_before_initialize_raises():
    with pytest.raises(RuntimeError):
        Upscaler().upscale(np.zeros((2, 2, 3), dtype=np.uint8))


def test_empty_frame_raises():
    upscaler = Upscaler()
    upscaler.initialize(8, 8)
    with pytest.raises(ValueError):
        upscaler.upscale(np.empty((0, 0, 3), dtype=np.uint8))


def test_gpu_not_available():
    upscaler = Upscaler(use_gpu=True)
    assert Upscaler.is_gpu_available() is False
    with pytest.raises(RuntimeError):
        upscaler.set_use_gpu(True)
    upscaler.set_use_gpu(False)
    assert upscaler.use_gpu is False


def test_nearest_replicates_pixels():
    upscaler = Upscaler(Algorithm.NEAREST)
    upscaler.initialize(4, 4)
    frame = np.array([[1, 2], [3, 4]], dtype=np.uint8)
    result = upscaler.upscale(frame)
    expected = np.array(
        [[1, 1, 2, 2], [1, 1, 2, 2], [3, 3, 4, 4], [3, 3, 4, 4]], dtype=np.uint8
    )
    np.testing.assert_array_equal(result, expected)


@pytest.mark.parametrize("algorithm", list(Algorithm))
def test_constant_frame_stays_constant(algorithm):
    upscaler = Upscaler(algorithm)
    upscaler.initialize(13, 9)
    frame = np.full((5, 7, 3), 100, dtype=np.uint8)
    result = upscaler.upscale(frame)
    assert result.shape == (9, 13, 3)
    assert np.all(result == 100)


@pytest.mark.parametrize("dtype", [np.uint16, np.float32])
def test_other_dtypes_and_channels(dtype):
    upscaler = Upscaler(Algorithm.BILINEAR)
    upscaler.initialize(10, 6)
    frame = np.full((3, 5, 4), 1000, dtype=dtype)
    result = upscaler.upscale(frame)
    assert result.shape == (6, 10, 4)
    assert result.dtype == dtype
    assert np.allclose(result, 1000)


def test_values_stay_within_input_range_for_bilinear():
    rng = np.random.default_rng(0)
    frame = rng.integers(20, 200, size=(6, 8, 3), dtype=np.uint8)
    upscaler = Upscaler(Algorithm.BILINEAR)
    upscaler.initialize(16, 12)
    result = upscaler.upscale(frame)
    assert result.min() >= frame.min()
    assert result.max() <= frame.max()


def test_super_res_falls_back_to_bicubic():
    rng = np.random.default_rng(1)
    frame = rng.integers(0, 256, size=(6, 8, 3), dtype=np.uint8)
    bicubic = Upscaler(Algorithm.BICUBIC)
    bicubic.initialize(20, 15)
    super_res = Upscaler(Algorithm.SUPER_RES)
    super_res.initialize(20, 15)
    np.testing.assert_array_equal(super_res.upscale(frame), bicubic.upscale(frame))


def test_set_algorithm_after_initialize():
    upscaler = Upscaler(Algorithm.BILINEAR)
    upscaler.initialize(4, 4)
    upscaler.set_algorithm(Algorithm.NEAREST)
    assert upscaler.algorithm_name() == "Nearest Neighbor"
    frame = np.array([[0, 255], [255, 0]], dtype=np.uint8)
    result = upscaler.upscale(frame)
    assert set(np.unique(result).tolist()) == {0, 255}