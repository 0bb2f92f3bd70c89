"""caixabean - Caixa bank statements to Beancount."""

__version__ = "0.1.0"
