"""
sfmcp.core - Resolution, policy and dispatch

- errors.py: error codes and exception classes
- target.py: DefaultTargetCache + TargetResolver
- permissions.py: AccessPolicy + AccessPolicyGate
- dispatcher.py: OperationDescriptor, OperationRegistry, Dispatcher
"""
