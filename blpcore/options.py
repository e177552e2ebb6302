r"""Global options.

These options control how status updates are displayed and which numerical tolerances are used when validating
inputs. Everything that changes the result of a single estimation call is instead configured with the value objects
passed to that call, such as :class:`ContractionOptions` and :class:`EstimationOptions`.

Attributes
----------
digits : `int`
    Number of digits displayed by status updates. The default number of digits is ``7``. The number of digits can be
    changed to, for example, ``2``, with ``blpcore.options.digits = 2``.
verbose : `bool`
    Whether to output status updates. By default, verbosity is turned on. Verbosity can be turned off with
    ``blpcore.options.verbose = False``.
verbose_tracebacks : `bool`
    Whether to include full tracebacks in error messages. By default, full tracebacks are turned off. Tracebacks can
    be turned on with ``blpcore.options.verbose_tracebacks = True``.
verbose_output : `callable`
    Function used to output status updates. The default function is simply ``print``. The function can be changed, for
    example, to send updates to a logger, with ``blpcore.options.verbose_output = logging.getLogger('blp').info``.
flush_output : `bool`
    Whether to call ``sys.stdout.flush()`` after outputting a status update. By default, output is not flushed.
dtype : `dtype`
    The data type used for internal calculations, which is by default ``numpy.float64``.
weights_tol : `float`
    Tolerance for detecting integration weights that do not sum to one, which is by default ``1e-9``. Simulation draws
    with weights that sum to a value farther than this from one are rejected.
singular_tol : `float`
    Tolerance for detecting singular matrices, which is by default ``1 / numpy.finfo(options.dtype).eps``. Moment
    matrices with a condition number larger than this tolerance are treated as singular. To disable this check, set
    ``blpcore.options.singular_tol = numpy.inf``.
collinear_atol : `float`
    Absolute tolerance for detecting collinear columns in :math:`X_1`, :math:`X_2`, and :math:`Z_D`.

    Each matrix is decomposed into a :math:`QR` decomposition and a warning is displayed for any column whose diagonal
    element in :math:`R` has a magnitude less than ``collinear_atol + collinear_rtol * sd`` where ``sd`` is the column's
    standard deviation.

    The default absolute tolerance is ``1e-10``. To disable collinearity checks, set
    ``blpcore.options.collinear_atol = blpcore.options.collinear_rtol = 0``.

collinear_rtol : `float`
    Relative tolerance for detecting collinear columns, which is by default also ``1e-10``.
psd_atol : `float`
    Absolute tolerance for detecting asymmetric custom weighting matrices, :math:`W`. An error is raised if any element
    differs from the corresponding element of :math:`W'` by more than ``psd_atol + psd_rtol * abs`` where ``abs`` is the
    element's absolute value. The default tolerance is ``1e-8``.
psd_rtol : `float`
    Relative tolerance for detecting asymmetric custom weighting matrices, which is by default also ``1e-8``.

"""

import numpy as _np


digits = 7
verbose = True
verbose_tracebacks = False
verbose_output = print
flush_output = False
dtype = _np.float64
weights_tol = 1e-9
singular_tol = 1 / _np.finfo(dtype).eps
collinear_atol = collinear_rtol = 1e-10
psd_atol = psd_rtol = 1e-8
