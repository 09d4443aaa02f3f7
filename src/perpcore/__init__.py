"""Oracle, risk and administrative core for a synthetic perpetual-futures market."""
