#!/usr/bin/env python3

from setuptools import setup

version = '1.0.0'
author = 'Azaria Zornberg'
email = 'a.zornberg96@gmail.com'
license_str = 'MIT License'
url = 'https://github.com/zorn96/adauth/'
description = 'Python library for authenticating users against Microsoft Active Directory and resolving their groups'
package_name = 'adauth'
package_folder = '.'

long_description = open('README.md', encoding='utf-8').read()
packages = ['adauth',
            'adauth.core',
            'adauth.environment',
            'adauth.environment.discovery',
            'adauth.environment.ldap',
            'adauth.environment.security'
            ]


setup_kwargs = {
    'packages': packages,
    'package_dir': {'': package_folder},
}

requirements = ['bcrypt>=3.2.0',
                'cachetools>=5.0.0',
                'dnspython>=2.1.0',
                'ldap3>=2.8.0',
                'requests>=2.25.0',
                'six>=1.15.0',
                ]

extra_requirements = {
    'test': ['pytest>=7.0.0'],
}

setup(name=package_name,
      version=version,
      install_requires=requirements,
      extras_require=extra_requirements,
      license=license_str,
      author=author,
      author_email=email,
      description=description,
      long_description=long_description,
      long_description_content_type='text/markdown',
      keywords='python3 ldap microsoft windows active-directory authentication groups ad',
      python_requires=">=3.7",
      url=url,
      classifiers=['Development Status :: 5 - Production/Stable',
                   'Intended Audience :: Developers',
                   'Intended Audience :: Information Technology',
                   'Intended Audience :: System Administrators',
                   'License :: OSI Approved :: MIT License',
                   'Operating System :: MacOS :: MacOS X',
                   'Operating System :: Microsoft :: Windows',
                   'Operating System :: POSIX :: Linux',
                   'Programming Language :: Python',
                   'Programming Language :: Python :: 3',
                   'Programming Language :: Python :: 3.7',
                   'Programming Language :: Python :: 3.8',
                   'Programming Language :: Python :: 3.9',
                   'Topic :: Security',
                   'Topic :: Software Development :: Libraries :: Python Modules',
                   'Topic :: System :: Systems Administration :: Authentication/Directory :: LDAP'],
      **setup_kwargs
      )
