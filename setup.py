from setuptools import setup


def readme():
    with open("README.md") as f:
        return f.read()


setup( name = "FrozenPhonons",
       version = "1.0alpha1",
       description = "Phonon modes from force constants, frozen phonon supercells and thermal ensembles, interfaced with ASE",
       long_description = readme(),
       long_description_content_type = "text/markdown",
       packages = ["frozenphonons"],
       package_dir = {"frozenphonons": "frozenphonons"},
       install_requires = ["numpy", "scipy", "ase"],
       extras_require = {"mpi" : ["mpi4py"], "test" : ["pytest"]},
       python_requires = ">=3.7",
       license = "MIT",
       )
