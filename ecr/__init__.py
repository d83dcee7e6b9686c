"""Essential Container Reaper (ECR).

Watches labelled pods and ends them once their essential container has
completed while sidecars keep running. Two remedial actions are supported:
 - delete the pod
 - inject an ephemeral container that signals the pod's root process
"""
