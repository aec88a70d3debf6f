"""Console output helpers for the optimizer and line search trace."""

import sys


class Colors:
    """ANSI color codes for terminal output."""

    BLUE = "\033[94m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    @classmethod
    def is_tty(cls):
        """Check if stdout is a TTY (supports colors)."""
        return sys.stdout.isatty()

    @classmethod
    def disable(cls):
        """Disable all colors."""
        cls.BLUE = ""
        cls.GREEN = ""
        cls.YELLOW = ""
        cls.RED = ""
        cls.RESET = ""
        cls.BOLD = ""
        cls.DIM = ""


# Disable colors if not in a TTY
if not Colors.is_tty():
    Colors.disable()


def info(message):
    """Print an informational message.

    Parameters
    ----------
    message : str
        Message to print
    """
    print(f"{Colors.BLUE}[INFO]{Colors.RESET} {message}")


def success(message):
    """Print a success message with checkmark.

    Parameters
    ----------
    message : str
        Message to print
    """
    print(f"{Colors.GREEN}✓{Colors.RESET} {message}")


def warning(message):
    """Print a warning message.

    Parameters
    ----------
    message : str
        Warning message to print
    """
    print(f"{Colors.YELLOW}[WARNING]{Colors.RESET} {message}")


def error(message):
    """Print an error message.

    Parameters
    ----------
    message : str
        Error message to print
    """
    print(f"{Colors.RED}[ERROR]{Colors.RESET} {message}", file=sys.stderr)


def debug(message):
    """Print a debug message (dimmed).

    Parameters
    ----------
    message : str
        Debug message to print
    """
    print(f"{Colors.DIM}[DEBUG] {message}{Colors.RESET}")


def banner(message, char="=", width=60):
    """Print a banner message.

    Parameters
    ----------
    message : str
        Message to display in banner
    char : str
        Character to use for banner lines
    width : int
        Width of the banner
    """
    print(char * width)
    print(message)
    print(char * width)


def format_linesearch_result(result):
    """Format a line search result for display.

    Parameters
    ----------
    result : LineSearchResult
        Step length and evaluation counts returned by the line search.

    Returns
    -------
    str
        One-line summary of the accepted step.
    """
    status = "exhausted" if result.exhausted else "accepted"
    return (
        f"step {status}: alpha = {result.alpha:.6g} "
        f"({result.f_calls} f evals, {result.g_calls} g evals)"
    )


def format_iteration(iter_num, fun_val, grad_norm, alpha=None):
    """Format one outer optimizer iteration.

    Parameters
    ----------
    iter_num : int
        Iteration index.
    fun_val : float
        Objective value at the current point.
    grad_norm : float
        Two-norm of the gradient at the current point.
    alpha : float or None
        Step length taken to reach the current point, if any.

    Returns
    -------
    str
        Formatted message
    """
    message = f"iter {iter_num:4d}: f = {fun_val: .10e}  |g| = {grad_norm:.3e}"
    if alpha is not None:
        message += f"  alpha = {alpha:.3e}"
    return message
