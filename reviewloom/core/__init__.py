# Subpackages are imported directly (reviewloom.core.analysis, .cache, ...)
# so that importing the db models does not pull in the LLM stack.
