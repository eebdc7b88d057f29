"""Tests for device buffers."""

import numpy as np
import pytest

from hairforge.compute.buffer import ComputeDevice
from hairforge.core.errors import AllocationError


def test_create_buffer_zero_filled():
    device = ComputeDevice()
    buf = device.create_buffer("positions", 5, 3)
    assert buf.count == 5
    assert buf.components == 3
    assert buf.stride == 12
    assert buf.nbytes == 60
    assert device.allocated_bytes == 60
    np.testing.assert_array_equal(buf.data, np.zeros((5, 3)))


def test_int_buffer_stride():
    device = ComputeDevice()
    buf = device.create_buffer("vertex_offsets", 4, 1, np.int32)
    assert buf.stride == 4
    assert buf.dtype == np.int32


def test_set_and_get_data():
    device = ComputeDevice()
    buf = device.create_buffer("v", 2, 3)
    buf.set_data([1, 2, 3, 4, 5, 6])
    out = buf.get_data()
    np.testing.assert_array_equal(out, [[1, 2, 3], [4, 5, 6]])
    # Host copy is detached from the device data
    out[0, 0] = 99
    assert buf.data[0, 0] == 1


def test_get_data_is_a_sync_point():
    device = ComputeDevice()
    buf = device.create_buffer("v", 1, 3)
    assert device.sync_count == 0
    buf.get_data()
    buf.get_data()
    assert device.sync_count == 2


def test_set_data_wrong_size():
    device = ComputeDevice()
    buf = device.create_buffer("v", 2, 3)
    with pytest.raises(ValueError):
        buf.set_data(np.zeros(5))


def test_memory_limit():
    device = ComputeDevice(memory_limit_bytes=100)
    device.create_buffer("a", 5, 4)  # 80 bytes
    with pytest.raises(AllocationError):
        device.create_buffer("b", 2, 4)
    assert device.allocated_bytes == 80


def test_invalid_request():
    device = ComputeDevice()
    with pytest.raises(AllocationError):
        device.create_buffer("bad", -1, 3)
    with pytest.raises(AllocationError):
        device.create_buffer("bad", 3, 0)


def test_empty_buffer_allowed():
    device = ComputeDevice()
    buf = device.create_buffer("empty", 0, 3)
    assert buf.count == 0
    assert buf.get_data().shape == (0, 3)


def test_release():
    device = ComputeDevice()
    buf = device.create_buffer("v", 4, 3)
    assert buf in device.live_buffers
    buf.release()
    assert buf.released
    assert device.allocated_bytes == 0
    assert buf not in device.live_buffers
    with pytest.raises(ValueError):
        buf.data
    # Second release is harmless
    buf.release()
    assert device.allocated_bytes == 0
    assert "released" in repr(buf)
