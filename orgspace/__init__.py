"""orgspace - organizations, projects and a plugin-extensible request pipeline."""

__version__ = "0.1.0"
