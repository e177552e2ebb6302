"""Basic functionality."""

import contextlib
import functools
import inspect
import multiprocessing.pool
import re
import sys
import time
import traceback
from typing import (
    Any, Callable, Container, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple, Type
)
import warnings

import numpy as np

from .. import options


# define common types
Array = Any
Options = Dict[str, Any]
Bounds = Tuple[Array, Array]
RecArray = Any

# define the pool managed by parallel and used by generate_items
pool: Any = None


@contextlib.contextmanager
def parallel(processes: int) -> Iterator[None]:
    r"""Context manager used for parallel processing in a ``with`` statement context.

    Inside this context, any function that works market by market, such as :func:`solve_delta`,
    :func:`predict_shares`, and :meth:`Problem.estimate`, distributes its markets among a pool of Python processes.
    Markets share no mutable state, so no locking is needed, and results are reassembled in their original row order.
    After the context ends, all worker processes are terminated.

    Multiprocessing only improves speed when the work in each market outweighs the overhead of serializing market data
    and passing it between processes.

    Arguments
    ---------
    processes : `int`
        Number of Python processes that will be created and used by any function that supports parallel processing.

    Examples
    --------
    .. code-block:: python

        with blpcore.parallel(4):
            results = problem.estimate(sigma)

    """

    # validate the number of processes
    if not isinstance(processes, int):
        raise TypeError("processes must be an int.")
    if processes < 2:
        raise ValueError("processes must be at least 2.")

    # start the process pool, wait for work to be done, and then terminate it
    output(f"Starting a pool of {processes} processes ...")
    start_time = time.time()
    global pool
    try:
        with multiprocessing.pool.Pool(processes) as pool:
            output(f"Started the process pool after {format_seconds(time.time() - start_time)}.")
            yield
            output(f"Terminating the pool of {processes} processes ...")
            terminate_time = time.time()
    finally:
        pool = None
    output(f"Terminated the process pool after {format_seconds(time.time() - terminate_time)}.")


def generate_items(keys: Iterable, factory: Callable[[Any], tuple], method: Callable) -> Iterator:
    """Generate (key, method(*factory(key))) tuples for each key. The first element returned by factory is an instance
    of the class to which method is attached. If a process pool has been started, items are generated in whatever order
    workers finish; otherwise, they are generated serially in key order.
    """
    if pool is None:
        return (generate_items_worker((k, factory(k), method)) for k in keys)
    return pool.imap_unordered(generate_items_worker, ((k, factory(k), method) for k in keys))


def generate_items_worker(args: Tuple[Any, tuple, Callable]) -> Tuple[Any, Any]:
    """Call the specified method of a class instance with any additional arguments. Return the associated key along with
    the returned object.
    """
    key, (instance, *method_args), method = args
    return key, method(instance, *method_args)


def structure_matrices(mapping: Mapping) -> RecArray:
    """Structure a mapping of keys to (array, type) tuples as a record array in which each sub-array is guaranteed to
    be at least two-dimensional.
    """
    size = next(iter(mapping.values()))[0].shape[0]
    matrices: List[Array] = []
    dtypes: List[Tuple[str, Any, Tuple[int, ...]]] = []
    for key, (array, dtype) in mapping.items():
        matrix = np.c_[array]
        dtypes.append((key, dtype, matrix.shape[1:]))
        matrices.append(matrix)

    # build the record array
    structured: RecArray = np.recarray(size, dtypes)
    for (key, _, _), matrix in zip(dtypes, matrices):
        structured[key] = matrix
    return structured


def extract_matrix(mapping: Mapping, key: str) -> Optional[Array]:
    """Attempt to extract a field from a mapping-like object or horizontally stack field0, field1, and so on, into a
    full matrix. The extracted array will have at least two dimensions. Missing and empty fields are both None.
    """
    try:
        matrix = np.c_[mapping[key]]
    except (KeyError, IndexError, ValueError):
        parts: List[Array] = []
        while True:
            try:
                part = np.c_[mapping[f'{key}{len(parts)}']]
            except (KeyError, IndexError, ValueError):
                break
            parts.append(part)
        matrix = np.hstack(parts) if parts else np.zeros((0, 0))
    return matrix if matrix.size > 0 else None


def warn(message: Any) -> None:
    """Output a warning."""
    old_formatwarning = warnings.formatwarning
    warnings.formatwarning = lambda x, *_, **__: f"{x}\n"
    warnings.warn(message)
    warnings.formatwarning = old_formatwarning


def output(message: Any) -> None:
    """Print a message if verbosity is turned on."""
    if options.verbose:
        if not callable(options.verbose_output):
            raise TypeError("options.verbose_output should be callable.")
        options.verbose_output(str(message))
        if options.flush_output:
            sys.stdout.flush()


def format_seconds(seconds: float) -> str:
    """Prepare a number of seconds to be displayed as a string."""
    hours, remainder = divmod(int(round(seconds)), 60**2)
    minutes, seconds = divmod(remainder, 60)
    return f'{hours:02}:{minutes:02}:{seconds:02}'


def format_number(number: Any) -> str:
    """Prepare a number to be displayed as a string."""
    if not isinstance(options.digits, int):
        raise TypeError("options.digits must be an int.")
    template = f"{{:^+{options.digits + 6}.{options.digits - 1}E}}"
    formatted = template.format(float(number))
    if "NAN" in formatted:
        formatted = formatted.replace("+", " ")
    return formatted


def format_options(mapping: Options) -> str:
    """Prepare a mapping of options to be displayed as a string."""
    strings: List[str] = []
    for key, value in mapping.items():
        if callable(value):
            value = f'{value.__module__}.{value.__qualname__}'
        elif isinstance(value, float):
            value = format_number(value)
        strings.append(f'{key}: {value}')

    joined = ', '.join(strings)
    return f'{{{joined}}}'


def format_table(
        header: Sequence, *data: Sequence, title: Optional[str] = None, include_border: bool = True,
        include_header: bool = True, line_indices: Container[int] = ()) -> str:
    """Format table information as a string, which has fixed widths, vertical lines after any specified indices, and
    optionally a title, border, and header. Header cells can be sequences of strings, which are stacked vertically.
    """

    # stack multi-line header cells from the bottom up
    header = [[c] if isinstance(c, str) else list(c) for c in header]
    height = max((len(c) for c in header), default=0)
    header_rows = [["" if len(c) < height - i else c[i - height + len(c)] for c in header] for i in range(height)]

    # construct the data rows, padding short rows with empty cells
    data_rows = [[str(c) for c in r] + [""] * (len(header) - len(r)) for r in data]

    # build a template with fixed column widths
    widths = [max(len(r[i]) for r in header_rows + data_rows) for i in range(len(header))]
    template = "  ".join("{{:^{}}}{}".format(w, "  |" if i in line_indices else "") for i, w in enumerate(widths))
    border = "=" * len(template.format(*[""] * len(widths)))

    # build the table
    lines = []
    if title is not None:
        lines.append(f"{title}:")
    if include_border:
        lines.append(border)
    if include_header:
        lines.extend(template.format(*r) for r in header_rows)
        lines.append(template.format(*("-" * w for w in widths)))
    lines.extend(template.format(*r) for r in data_rows)
    if include_border:
        lines.append(border)
    return "\n".join(lines)


class SolverStats(object):
    """Structured statistics returned by a generic numerical solver."""

    converged: bool
    iterations: int
    evaluations: int

    def __init__(self, converged: bool = True, iterations: int = 0, evaluations: int = 0) -> None:
        """Structure the statistics."""
        self.converged = converged
        self.iterations = iterations
        self.evaluations = evaluations


class StringRepresentation(object):
    """Object that defers to its string representation."""

    def __repr__(self) -> str:
        """Defer to the string representation."""
        return str(self)


class Error(Exception):
    """Errors that are indistinguishable from others with the same message, which is parsed from the docstring."""

    stack: Optional[str]

    def __init__(self, *args: Any) -> None:
        """Keep any arguments so that the error survives pickling between processes, and optionally store the full
        current traceback for debugging purposes.
        """
        super().__init__(*args)
        if options.verbose_tracebacks:
            self.stack = ''.join(traceback.format_stack())
        else:
            self.stack = None

    def __eq__(self, other: Any) -> bool:
        """Defer to hashes."""
        return hash(self) == hash(other)

    def __hash__(self) -> int:
        """Hash this instance such that in collections it is indistinguishable from others with the same message."""
        return hash((type(self).__name__, str(self)))

    def __repr__(self) -> str:
        """Defer to the string representation."""
        return str(self)

    def __str__(self) -> str:
        """Replace docstring markup with simple text."""
        doc = inspect.getdoc(self)
        assert doc is not None

        # normalize LaTeX
        while True:
            match = re.search(r':math:`([^`]+)`', doc)
            if match is None:
                break
            start, end = match.span()
            doc = doc[:start] + re.sub(r'\s+', ' ', re.sub(r'[\\{}]', ' ', match.group(1))).strip() + doc[end:]

        # remove all remaining roles and compress whitespace
        doc = re.sub(r'[\s\n]+', ' ', re.sub(r':[a-z\-]+:|`', '', doc))

        # optionally add the full traceback
        if self.stack is not None:
            doc = f"{doc} Traceback:\n\n{self.stack}\n"
        return doc


class DetailedError(Error):
    """Invalid input."""

    _details: str

    def __init__(self, details: str) -> None:
        """Store a description of the offending input."""
        super().__init__(details)
        self._details = details

    def __str__(self) -> str:
        """Supplement the error with the details."""
        return f"{super().__str__()} {self._details}"


class NumericalError(Error):
    """Floating point issues."""

    _messages: Set[str]

    def __init__(self) -> None:
        super().__init__()
        self._messages: Set[str] = set()

    def __str__(self) -> str:
        """Supplement the error with the messages."""
        combined = ", ".join(sorted(self._messages))
        return f"{super().__str__()} Errors encountered: {combined}."


class InversionError(Error):
    """Problems with inverting a matrix."""

    _condition: float

    def __init__(self, matrix: Array) -> None:
        """Compute condition number of the matrix."""
        super().__init__(matrix)
        from .algebra import compute_condition_number
        self._condition = compute_condition_number(matrix)

    def __str__(self) -> str:
        """Supplement the error with the condition number."""
        return f"{super().__str__()} Condition number: {format_number(self._condition)}."


class NumericalErrorHandler(object):
    """Decorator that appends errors to a function's returned list when numerical errors are encountered."""

    error: Type[NumericalError]

    def __init__(self, error: Type[NumericalError]) -> None:
        """Store the error class."""
        self.error = error

    def __call__(self, decorated: Callable) -> Callable:
        """Decorate the function."""
        @functools.wraps(decorated)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            """Configure NumPy to detect numerical errors."""
            detector = NumericalErrorDetector(self.error)
            with np.errstate(divide='call', over='call', under='ignore', invalid='call'):
                np.seterrcall(detector)
                returned = decorated(*args, **kwargs)
            if detector.detected is not None:
                returned[-1].append(detector.detected)
            return returned

        return wrapper


class NumericalErrorDetector(object):
    """Error detector to be passed to NumPy's error call function."""

    error: Type[NumericalError]
    detected: Optional[NumericalError]

    def __init__(self, error: Type[NumericalError]) -> None:
        """By default no error is detected."""
        self.error = error
        self.detected = None

    def __call__(self, message: str, _: int) -> None:
        """Initialize the error and store the error message."""
        if self.detected is None:
            self.detected = self.error()
        self.detected._messages.add(message)
