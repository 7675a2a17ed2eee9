"""Standard exit codes for the Opsdeck CLI."""


class ExitCode:
    """Exit codes returned by ``opsdeck`` commands.

    - 0: Success
    - 1: General error
    - 2: Configuration error
    - 3: Database error
    - 4: Invalid argument or job definition
    - 5: Job not found
    - 6: Job already running
    - 7: Execution finished unsuccessfully
    - 130: Cancelled by Ctrl+C (SIGINT)
    """

    SUCCESS = 0
    GENERAL_ERROR = 1

    CONFIGURATION_ERROR = 2
    DATABASE_ERROR = 3
    INVALID_ARGUMENT = 4
    NOT_FOUND = 5
    CONFLICT = 6
    EXECUTION_FAILED = 7

    # Signal-based exits (128 + signal number)
    CANCELLED = 130

    @classmethod
    def get_name(cls, code: int) -> str:
        """Get the name of an exit code."""
        names = {
            cls.SUCCESS: "SUCCESS",
            cls.GENERAL_ERROR: "GENERAL_ERROR",
            cls.CONFIGURATION_ERROR: "CONFIGURATION_ERROR",
            cls.DATABASE_ERROR: "DATABASE_ERROR",
            cls.INVALID_ARGUMENT: "INVALID_ARGUMENT",
            cls.NOT_FOUND: "NOT_FOUND",
            cls.CONFLICT: "CONFLICT",
            cls.EXECUTION_FAILED: "EXECUTION_FAILED",
            cls.CANCELLED: "CANCELLED",
        }
        return names.get(code, f"UNKNOWN({code})")

    @classmethod
    def get_description(cls, code: int) -> str:
        """Get the description of an exit code."""
        descriptions = {
            cls.SUCCESS: "Operation completed successfully",
            cls.GENERAL_ERROR: "An unexpected error occurred",
            cls.CONFIGURATION_ERROR: "Configuration error or invalid config file",
            cls.DATABASE_ERROR: "Database error",
            cls.INVALID_ARGUMENT: "Invalid argument or job definition",
            cls.NOT_FOUND: "Requested job not found",
            cls.CONFLICT: "Job already has an execution in progress",
            cls.EXECUTION_FAILED: "Job execution failed or timed out",
            cls.CANCELLED: "Operation cancelled by user",
        }
        return descriptions.get(code, f"Unknown exit code: {code}")
