"""ATProto collection NSIDs for Hypercerts record types"""

COLLECTION_ACTIVITY = "org.hypercerts.claim.activity"
COLLECTION_CONTRIBUTOR_INFO = "org.hypercerts.claim.contributorInformation"
COLLECTION_MEASUREMENT = "org.hypercerts.claim.measurement"
COLLECTION_ATTACHMENT = "org.hypercerts.claim.attachment"
COLLECTION_COLLECTION = "org.hypercerts.claim.collection"
COLLECTION_EVALUATION = "org.hypercerts.claim.evaluation"
COLLECTION_RIGHTS = "org.hypercerts.claim.rights"
COLLECTION_FUNDING_RECEIPT = "org.hypercerts.funding.receipt"
COLLECTION_WORK_SCOPE_TAG = "org.hypercerts.helper.workScopeTag"
COLLECTION_LOCATION = "app.certified.location"
