# clinic_payroll/models/__init__.py
import importlib
import pkgutil
import pathlib

_EXCLUDE = {"__pycache__"}

def load_all():
    """Import every model module in this package so the metadata is complete for create_all/autogenerate."""
    pkg_path = pathlib.Path(__file__).parent
    for mod in pkgutil.iter_modules([str(pkg_path)]):
        if mod.name in _EXCLUDE:
            continue
        importlib.import_module(f"{__name__}.{mod.name}")
