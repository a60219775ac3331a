class InvalidClosurePolicy(ValueError):
    pass
