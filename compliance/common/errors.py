class ComplianceError(Exception):
    pass


class ConfigError(ComplianceError):
    pass


class ConfigParseError(ConfigError):
    pass


class ConfigMissingError(ConfigError):
    pass


class ConfigInconsistencyError(ConfigError):
    pass


class UnknownEntityError(ComplianceError, KeyError):
    def __str__(self):
        return str(self.args[0]) if self.args else ""


class LifecycleError(ComplianceError):
    pass


class TemplateRenderError(ComplianceError):
    pass


class EnrollmentError(ComplianceError):
    pass


class TransactionError(ComplianceError):
    def __init__(
        self, message, org=None, channel=None, contract=None, function=None, cause=None
    ):
        ComplianceError.__init__(self, message)
        self.org = org
        self.channel = channel
        self.contract = contract
        self.function = function
        self.cause = cause


class InstantiationTimeoutError(ComplianceError):
    def __init__(self, message, attempts=0):
        ComplianceError.__init__(self, message)
        self.attempts = attempts


class WorldStateError(ComplianceError):
    pass
