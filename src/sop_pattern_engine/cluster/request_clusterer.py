"""
Request Clustering Module.

Groups similar free-text requests so repeated asks can become SOPs:
- TF-IDF vectorization over the batch vocabulary (smoothed idf, L2 norm)
- Greedy agglomerative clustering on cosine similarity of cluster means
- Common entities and an intent label per cluster

Vectorization and clustering are deterministic for a fixed input order.
Only the intent label may vary, and only when a completion service is
configured.
"""

import hashlib
import logging
from collections import Counter
from typing import List, Optional

import numpy as np
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.preprocessing import normalize

from ..completion import DisabledCompletionService, TextCompletionService
from ..config import ClusteringOptions
from ..errors import CompletionUnavailableError
from ..models import ClusteredRequest, RequestCluster, RequestRecord
from ..normalize.text_processor import RequestTextProcessor

logger = logging.getLogger(__name__)


class RequestClusterer:
    """
    Agglomerative clusterer for user requests.
    """

    # Default TF-IDF parameters; with these, idf = ln((N+1)/(df+1)) + 1
    DEFAULT_TFIDF_PARAMS = {
        'smooth_idf': True,
        'sublinear_tf': False,
        'norm': 'l2',
    }

    # A token is "common" when it appears in at least this share of members
    ENTITY_MIN_SHARE = 0.5
    MAX_ENTITIES = 5
    INTENT_SAMPLE_SIZE = 5
    INTENT_MAX_TOKENS = 100

    def __init__(
        self,
        options: Optional[ClusteringOptions] = None,
        completion_service: Optional[TextCompletionService] = None,
        text_processor: Optional[RequestTextProcessor] = None,
    ):
        """
        Initialize the request clusterer.

        Args:
            options: Default clustering options
            completion_service: Used to name cluster intents
            text_processor: Tokenizer shared by vectorization and entities
        """
        self.options = (options or ClusteringOptions()).clamped()
        self.completion_service = completion_service or DisabledCompletionService()
        self.text_processor = text_processor or RequestTextProcessor()

    def cluster(
        self,
        requests: List[RequestRecord],
        options: Optional[ClusteringOptions] = None,
    ) -> List[RequestCluster]:
        """
        Cluster requests.

        Args:
            requests: Requests to cluster
            options: Overrides the clusterer's default options

        Returns:
            Clusters with at least min_cluster_size members
        """
        opts = options.clamped() if options is not None else self.options
        if len(requests) < opts.min_cluster_size:
            return []

        embeddings = self.embed_requests([r.text for r in requests])
        groups = self._agglomerate(embeddings, opts.similarity_threshold)
        groups = [g for g in groups if len(g) >= opts.min_cluster_size]

        clusters = [self._build_cluster(g, requests, embeddings) for g in groups]
        logger.info(
            f"Clustered {len(requests)} requests into {len(clusters)} clusters "
            f"(threshold={opts.similarity_threshold})"
        )
        return clusters

    def embed_requests(self, texts: List[str]) -> np.ndarray:
        """
        TF-IDF embeddings, one L2-normalized row per text.

        Texts without usable tokens get a zero row.
        """
        vectorizer = TfidfVectorizer(
            analyzer=self.text_processor.tokenize,
            **self.DEFAULT_TFIDF_PARAMS,
        )
        try:
            matrix = vectorizer.fit_transform(texts)
        except ValueError as e:
            # Raised when no text yields a single token
            logger.warning(f"TF-IDF vectorization failed: {e}")
            return np.zeros((len(texts), 1))
        return matrix.toarray()

    def _agglomerate(self, embeddings: np.ndarray, threshold: float) -> List[List[int]]:
        """
        Greedy merging of the most similar pair of clusters.

        Similarity is the cosine between re-normalized member means. Ties
        go to the lowest (i, j); the merged cluster is appended last.
        """
        members: List[List[int]] = [[i] for i in range(len(embeddings))]
        centers = [embeddings[i].copy() for i in range(len(embeddings))]

        while len(members) > 1:
            matrix = np.vstack(centers)
            similarity = matrix @ matrix.T
            similarity[np.tril_indices(len(members))] = -np.inf
            flat = int(np.argmax(similarity))
            i, j = divmod(flat, len(members))
            if similarity[i, j] < threshold:
                break

            merged = members[i] + members[j]
            center = self._mean_direction(embeddings[merged])
            for index in (j, i):
                del members[index]
                del centers[index]
            members.append(merged)
            centers.append(center)

        return members

    @staticmethod
    def _mean_direction(vectors: np.ndarray) -> np.ndarray:
        mean = vectors.mean(axis=0, keepdims=True)
        return normalize(mean, norm='l2')[0]

    def _build_cluster(
        self,
        group: List[int],
        requests: List[RequestRecord],
        embeddings: np.ndarray,
    ) -> RequestCluster:
        vectors = embeddings[group]
        center = self._mean_direction(vectors)
        similarities = vectors @ center

        members = [
            ClusteredRequest(
                id=requests[idx].id,
                text=requests[idx].text,
                embedding=[float(x) for x in embeddings[idx]],
                user_id=requests[idx].user_id,
                timestamp=requests[idx].timestamp,
                distance=float(1.0 - similarities[pos]),
            )
            for pos, idx in enumerate(group)
        ]
        texts = [m.text for m in members]
        entities = self.extract_common_entities(texts)

        digest = hashlib.sha256("|".join(sorted(m.id for m in members)).encode()).hexdigest()
        cluster = RequestCluster(
            id=f"CLU-{digest[:12].upper()}",
            centroid=requests[group[int(np.argmax(similarities))]].text,
            requests=members,
            common_intent="",
            common_entities=entities,
        )
        cluster.common_intent = self.extract_intent(cluster)
        cluster.automatable = self.is_automatable(cluster)
        return cluster

    def extract_common_entities(self, texts: List[str]) -> List[str]:
        """Tokens present in at least half of the texts, most frequent first."""
        document_counts = Counter()
        for text in texts:
            document_counts.update(dict.fromkeys(self.text_processor.tokenize(text), 1))
        threshold = len(texts) * self.ENTITY_MIN_SHARE
        common = [(t, c) for t, c in document_counts.items() if c >= threshold]
        common.sort(key=lambda tc: tc[1], reverse=True)
        return [t for t, _ in common[:self.MAX_ENTITIES]]

    def extract_intent(self, cluster: RequestCluster) -> str:
        """
        Short intent label for a cluster.

        Asks the completion service first; falls back to a label built
        from the cluster's common entities.
        """
        samples = [r.text for r in cluster.requests[:self.INTENT_SAMPLE_SIZE]]
        prompt = (
            "Given these similar user requests, describe the common intent in a "
            "short phrase (5-10 words):\n\n"
            + "\n".join(f"- {s}" for s in samples)
            + "\n\nCommon intent:"
        )
        try:
            intent = self.completion_service.complete(prompt, self.INTENT_MAX_TOKENS).strip()
            if intent:
                return intent
        except CompletionUnavailableError:
            logger.debug(f"No completion service, using fallback intent for {cluster.id}")
        except Exception as e:
            logger.warning(f"Intent extraction failed for cluster {cluster.id}: {e}")
        return self.fallback_intent(cluster.common_entities)

    @staticmethod
    def fallback_intent(entities: List[str]) -> str:
        if entities:
            return f"Handle {', '.join(entities[:3])} requests"
        return "Process similar requests"

    def is_automatable(self, cluster: RequestCluster) -> bool:
        return (
            cluster.size >= 3
            and bool(cluster.common_intent)
            and cluster.distinct_users >= 2
        )


def cluster_requests(
    requests: List[RequestRecord],
    min_cluster_size: int = 3,
    similarity_threshold: float = 0.5,
) -> List[RequestCluster]:
    """
    Convenience function for request clustering without completion.

    Returns:
        Request clusters
    """
    clusterer = RequestClusterer(ClusteringOptions(
        min_cluster_size=min_cluster_size,
        similarity_threshold=similarity_threshold,
    ))
    return clusterer.cluster(requests)
