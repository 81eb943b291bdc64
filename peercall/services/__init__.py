"""Business Logic Services.

This package contains the service modules behind a peercall client and
the signaling relay.

Service Categories:
- Signaling: server-push channel, signal sender, inbound signal router
- Call: peer connection lifecycle, media, call intent persistence
- Relay: server-side fan-out of signaling events

Top-level helpers:
- client: CallClient, wiring the above for one identity
- chat: in-call chat log
- auth_service: bearer tokens shared by the relay and its clients
"""
