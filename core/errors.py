# errors.py


class SystemStructureError(RuntimeError):
    """A connection references a technology that is not part of the system."""


class SystemCompleteError(RuntimeError):
    """Structural change requested on a system that is already complete."""


class MassflowNotComputedError(RuntimeError):
    """Mass-flow statistics are required but no summary has been computed yet."""


class UnmatchedSourceError(KeyError):
    """Input masses do not cover every source technology of a system."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class MassBalanceError(ValueError):
    pass


class TechFileError(ValueError):
    pass


class InputMassesError(ValueError):
    pass
