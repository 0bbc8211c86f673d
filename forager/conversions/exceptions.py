"""Conversion pipeline exceptions."""


class ExternalToolFailed(Exception):
    """An external grid/raster command exited unsuccessfully."""

    def __init__(self, command: str, exit_code: int | None, stderr: str):
        if exit_code is None:
            message = f"{command} could not be started:\n{stderr}"
        else:
            message = f"{command} exited with code {exit_code}:\n{stderr}"
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
