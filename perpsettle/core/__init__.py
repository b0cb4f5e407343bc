"""
Core settlement algorithms: fixed-point math, parameters, funding, accumulation,
risk and the oracle boundary.
"""
