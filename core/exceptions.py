"""
Exceptions raised by the engine, the engine loader and the conversion runner.

Loader failures carry the FailureDiagnostics that were recorded for them so
that every waiter of a shared acquisition sees the same context.
"""

class ForgeError(Exception):
    """Base exception for VideoForge errors"""
    def __init__(self, message, diagnostics=None):
        self.message = message
        self.diagnostics = diagnostics
        super().__init__(self.message)

class CapabilityMissing(ForgeError): pass
class EngineAcquisitionFailed(ForgeError): pass
class EngineNotReady(ForgeError): pass


class EngineError(ForgeError):
    """Base exception for errors reported by the ffmpeg engine"""
    def __init__(self, message, command=None, output=None):
        super().__init__(message)
        self.command = command
        self.output = output

class EngineBootError(EngineError): pass
class EngineCommandError(EngineError): pass
class EngineBusyError(EngineError): pass
class WorkspaceError(EngineError): pass


class AssetFetchError(ForgeError):
    """Raised when the engine binary could not be downloaded or located."""
    def __init__(self, message, url=None):
        super().__init__(message)
        self.url = url
