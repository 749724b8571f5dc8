from .errors import ConfigError

# Decides when a fixed size simulation step is due, given the wall clock time of the caller's loop.
# The first call always fires, after that one frame fires per elapsed time_step.
class FixedFrameGenerator:
    def __init__(self, time_step):
        if not time_step > 0: raise ConfigError(f'time_step must be positive, got {time_step}')
        self.step, self.last_time, self.first_frame = time_step, 0.0, True

    def Next(self, current_time):
        if self.first_frame:
            self.first_frame, self.last_time = False, current_time
            return True
        if current_time - self.last_time >= self.step:
            self.last_time += self.step
            return True
        return False

    # every frame due at current_time, at most max_steps of them (None for no limit)
    def Iter(self, current_time, max_steps=None):
        n = 0
        while (max_steps is None or n < max_steps) and self.Next(current_time):
            n += 1
            yield n
