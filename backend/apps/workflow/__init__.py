"""Form lifecycle engine: phases, eligibility, lock/freeze/SDV/sign transitions."""
