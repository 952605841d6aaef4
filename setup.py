import os
import sys

from setuptools import find_namespace_packages, setup
try:
    import tomllib
except ModuleNotFoundError:
    import tomli as tomllib

sys.path.insert(0, os.path.dirname(__file__))

with open('pyproject.toml', 'rb') as f:
    pyproject = tomllib.load(f)


def load_long_description():
    with open(pyproject["project"]["readme"], mode='r', encoding="utf-8") as f:
        return f.read()


excludes = ("tests", "tests.*", "examples", "examples.*", "docs", "docs.*", "devtools", "devtools.*")

metadata = \
    dict(
        long_description=load_long_description(),
        long_description_content_type='text/markdown',
        zip_safe=False,
        packages=find_namespace_packages(where=".", include=("emchain", "emchain.*"), exclude=excludes),
        include_package_data=True,
    )

if __name__ == '__main__':
    setup(**metadata)
