# Copyright 2023 - Compute Heavy Industries Incorporated
# This work is released, distributed, and licensed under AGPLv3.

class DisposedError(ValueError):
    """Operation on a stream that has been closed."""
    pass

class InvalidOperationError(Exception):
    """Operation not supported in the stream's current state."""
    pass

class ValidationError(Exception):
    """Edit script or integrity validation exception."""
    pass
