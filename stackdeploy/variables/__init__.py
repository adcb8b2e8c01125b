from .resolver import ResolvedVariables, VariableResolver, encode_tf_value, tf_secret_var_name, tf_var_name  # noqa: F401
