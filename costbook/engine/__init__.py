"""
Recipe calculation engine.

Pure Python, no database access. Formulas are data: they are parsed by a
small shunting-yard evaluator, never executed as code. Callers pass
templates, variants and a price lookup in explicitly.
"""
