#!/usr/bin/env python

from setuptools import setup

import privaccess

setup(name='privaccess',
      version=privaccess.VERSION,
      description='Location-bound zero-knowledge door access with Schnorr proofs',
      packages=['privaccess'],
      license="2-clause BSD",
      long_description="""A library proving knowledge of a role key without revealing it, bound to a geohash claim, over OpenSSL big numbers""",
      python_requires=">=3.6",

      install_requires=[
            "cffi >= 1.0.0",
            "pycparser >= 2.10",
            "msgpack >= 1.0.0",
            "pytest >= 2.5.0",
      ],
      extras_require={
            "test": [
                  "pytest >= 2.5.0",
                  "pytest-cov >= 1.8.1",
                  "paver >= 1.2.3",
            ],
      },
      zip_safe=False,
)
