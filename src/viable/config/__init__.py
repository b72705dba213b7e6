"""
Layered configuration files applied to module globals. See config.configure_module.
"""
