"""Cherry-pick orchestration engine.

Key Components:
    - filters: Pure discovery filter over pull request labels
    - discovery.PullRequestDiscovery: Lists qualifying pull requests
    - resolver.AutoDiscoveryResolver: Picks owner and repository
    - session: Pure cherry-pick session state machine
    - orchestrator.CherryPickOrchestrator: Drives sessions against git
    - label_updater.LabelUpdater: Flips pending labels to completed
"""
