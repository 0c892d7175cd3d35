from setuptools import setup, find_packages

setup(
    name='kubeboot',
    version='0.1.0',
    packages=find_packages(exclude=['kubeboot.tests']),
    include_package_data=True,
    install_requires=[
        'typer',
        'pyyaml',
        'jsonschema',
        'pydantic>=2',
        'paramiko',
        'kubernetes',
        'python-dotenv',
        'requests'
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'kubeboot=kubeboot.cli:run'
        ]
    },
    description='Bootstrap a kubeadm cluster (one coordinator, N workers) from bare virtual machines',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
)
