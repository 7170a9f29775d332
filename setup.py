from setuptools import setup, find_packages

setup(
    name='updatectl',
    version='0.1.0',
    packages=find_packages(include=['updatectl', 'updatectl.*']),
    include_package_data=True,
    install_requires=[
        'typer[all]',
        'fastapi',
        'uvicorn',
        'kubernetes',
        'pydantic>=2',
        'PyYAML',
        'python-dotenv',
        'requests',
        'urllib3',
    ],
    extras_require={
        'test': [
            'pytest',
            'httpx',
            'jsonschema',
        ],
    },
    entry_points={
        'console_scripts': [
            'updatectl=updatectl.cli:app'
        ]
    },
    description='Rolling OS package and cluster runtime updates for small on-premises clusters',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
)
