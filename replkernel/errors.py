"Exception hierarchy for replkernel."


class KernelError(Exception): pass

class ConfigError(KernelError):
    "Bad or missing startup configuration."

class ProtocolError(KernelError):
    "Malformed frame or signature mismatch on receive."

class TransportError(KernelError):
    "Socket-level send/receive failure."

class ClosedConnectionError(TransportError):
    "Operation attempted on a closed channel or connection."

class EvaluationError(KernelError):
    "Raised by an evaluator that could not run the submitted code."
