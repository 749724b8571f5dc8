import pytest

from fast_mass_spring import ConfigError, FixedFrameGenerator

def test_first_frame_fires_immediately():
    frames = FixedFrameGenerator(0.25)
    assert frames.Next(1.0)
    assert not frames.Next(1.1)
    assert frames.Next(1.25)
    assert not frames.Next(1.3)

def test_iter_catches_up():
    frames = FixedFrameGenerator(0.5)
    assert list(frames.Iter(0.0)) == [1]
    assert list(frames.Iter(2.0)) == [1, 2, 3, 4]
    assert list(frames.Iter(2.2)) == []

def test_iter_limit():
    frames = FixedFrameGenerator(0.5)
    frames.Next(0.0)
    assert len(list(frames.Iter(10.0, max_steps=1))) == 1
    assert len(list(frames.Iter(10.0, max_steps=3))) == 3
    assert len(list(frames.Iter(10.0))) == 16

def test_bad_time_step():
    with pytest.raises(ConfigError): FixedFrameGenerator(0.0)
