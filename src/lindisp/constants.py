"""Numerical constants shared by the dispersion solver.

Physical quantities are normalised (momenta to m_p v_A, frequencies to
Omega_p, wavenumbers to 1/d_p), so only mathematical constants and the
fixed numerical guards live here.
"""

import scipy.constants as _sc

# Mathematical
pi = _sc.pi

# Map-search sanitisation sentinels
NAN_SENTINEL = 999999.0       # Replaces NaN determinant values
OVERFLOW_SENTINEL = 899999.0  # Replaces infinite / overflowing values
OVERFLOW_LIMIT = 1.0e100      # |D| above this counts as overflow

# Secant degeneracy guard
SECANT_DENOM_FLOOR = 1.0e-80  # |D_k - D_{k-1}| below this triggers a nudge
SECANT_NUDGE = 1.0e-8         # Absolute shift applied to the previous point

# Bessel order search
BESSEL_ORDER_WARN = 1000      # Warn when n_max grows beyond this order
