"""Fatal errors. Any of these aborts a stitch run."""


class StitchError(RuntimeError):
    pass


class SourceNotFoundError(StitchError):
    """A segment references a source identifier that was not supplied."""

    def __init__(self, source_id, scene_id=None):
        self.source_id = source_id
        self.scene_id = scene_id
        where = f" (scene {scene_id})" if scene_id is not None else ""
        super().__init__(f"Source {source_id!r} not found{where}")


class EncoderError(StitchError):
    """The encoder sink rejected a sample or failed to produce output."""
    pass


class SinkStateError(EncoderError):
    """The sink was used outside its start()..finalize() window."""
    pass


class OperationTimeoutError(StitchError):
    pass


class StitchCancelledError(StitchError):
    pass
