"""app.integrations — Collaborator gateway modules.

The risk engine reads data owned by other subsystems only through a gateway
in this package, never via direct queries in services or blueprints.

Current gateways:
  risk_collaborators.ProfileGateway / EvidenceGateway / ApplicationGateway
"""
