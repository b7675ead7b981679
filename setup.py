from setuptools import setup, find_packages

with open("specbank/__init__.py") as f:
    exec([x for x in f.readlines() if '__version__' in x][0])

with open("README.md", "r") as fh:
    long_description = fh.read()

with open("requirements.txt", "r") as f:
    requirements = f.read()


setup(
  name='specbank-lcms',
  version=__version__,
  description='LC-MS/MS preprocessing to feature tables and representative MS2 spectral libraries',
  long_description=long_description,
  long_description_content_type="text/markdown",
  license='BSD 3-Clause',
  keywords='metabolomics mass spectrometry LC-MS/MS spectral library',

  classifiers=[
    'Intended Audience :: Developers',
    'Intended Audience :: Science/Research',
    'License :: OSI Approved :: BSD License',
    'Natural Language :: English',
    'Operating System :: OS Independent',
    'Programming Language :: Python :: 3',
    'Topic :: Scientific/Engineering :: Bio-Informatics',
    'Topic :: Scientific/Engineering :: Chemistry',
    'Topic :: Software Development :: Libraries :: Python Modules',
  ],

  packages=find_packages(
    include=['specbank', 'specbank.*']
  ),
  include_package_data=True,
  zip_safe=True,
  entry_points = {
        'console_scripts': ['specbank=specbank.main:main'],
    },

  python_requires='>=3.8',
  install_requires=requirements,
  extras_require={
        'test': ['pytest'],
    },

)
