"""Core building blocks: configuration, errors, events and the evaluator."""
