"""PropertyChain Application Package — fractional property token allocation backend."""
