class FastMassSpringError(Exception):
    pass

# bad constraint / particle / solver option, raised before any factorization
class ConfigError(FastMassSpringError, ValueError):
    pass

# M + h^2 L is not positive definite, the simulation can not go on
class FactorizationError(FastMassSpringError, RuntimeError):
    pass

# solve requested after Invalidate() (or a cloth mutation) without Rebuild()
class StaleFactorizationError(FastMassSpringError, RuntimeError):
    pass
