import os.path
import re

from paver.tasks import task
from paver.easy import sh


def tell(x):
    print()
    print(("-"*10)+ str(x) + ("-"*10))
    print()

@task
def build(quiet=True):
    """ Builds the privaccess source distribution. """
    tell("Build dist")
    sh('python setup.py sdist', capture=quiet)

@task
def test(quiet=False):
    """ Runs the inline tests and doctests of the library and examples, with coverage. """
    tell("Run tests")
    sh('py.test -v --doctest-modules --cov=privaccess --cov-report=term-missing privaccess/*.py examples/*.py', capture=quiet)

@task
def lint(quiet=False):
    """ Run the python linter on privaccess. """
    tell("Run pylint on the library")
    sh('pylint --disable=missing-docstring privaccess', capture=quiet)

@task
def version(quiet=False):
    """ Prints the version declared in privaccess/__init__.py. """
    lib = open(os.path.join("privaccess", "__init__.py")).read()
    v = re.findall("VERSION.*=.*['\"](.*)['\"]", lib)[0]
    tell("privaccess version %s" % v)

@task
def wc(quiet=False):
    """ Count the privaccess library and example code lines. """
    tell("Counting code lines")

    print("\nLibrary code:")
    sh('wc -l privaccess/*.py', capture=quiet)

    print("\nExample code:")
    sh('wc -l examples/*.py', capture=quiet)

    print("\nAdministration code:")
    sh('wc -l pavement.py setup.py', capture=quiet)
