"""Remote-State Adapters, one module per resource kind."""
